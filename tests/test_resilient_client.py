import asyncio
import random
import json

import httpx
import pytest

from prompt_relay.client import ResilientCompletionClient
from prompt_relay.contracts import CompletionRequest, RetryPolicy, Usage
from prompt_relay.errors import (
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    RateLimitExceededError,
    UpstreamError,
    UpstreamServerError,
)
from prompt_relay.transports import DeepSeekTransport, OpenAITransport

OK_BODY = {
    "choices": [{"message": {"content": "hi"}}],
    "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    "model": "m",
}


class SleepRecorder:
    def __init__(self):
        self.waits: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


def _client(handler, *, transport=None, sleeper=None, rng=None):
    return ResilientCompletionClient(
        transport or OpenAITransport(base_url="https://example.test/v1"),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleeper=sleeper or SleepRecorder(),
        rng=rng or (lambda: 0.0),
    )


def _scripted(responses):
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        item = responses[min(calls["n"], len(responses) - 1)]
        calls["n"] += 1
        if isinstance(item, Exception):
            raise item
        # fresh object per call; the last scripted response may be served repeatedly
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    return handler, calls


@pytest.mark.asyncio
async def test_success_parses_text_usage_and_model():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert str(request.url) == "https://example.test/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content.decode("utf-8"))
        assert body == {
            "model": "gpt-3.5-turbo",
            "messages": [{"role": "user", "content": "hello"}],
            "temperature": 0.7,
            "max_tokens": 500,
        }
        return httpx.Response(200, json=OK_BODY)

    c = _client(handler)
    try:
        result = await c.complete(CompletionRequest(prompt="hello"), "sk-test")
        assert result.text == "hi"
        assert result.usage == Usage(prompt_tokens=1, completion_tokens=1, total_tokens=2)
        assert result.model == "m"
        assert result.raw == OK_BODY
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_success_without_choices_returns_empty_text():
    handler, calls = _scripted([httpx.Response(200, json={"choices": [], "model": "m"})])
    c = _client(handler)
    try:
        result = await c.complete(CompletionRequest(prompt="hello"), "k")
        assert result.text == ""
        assert result.usage == Usage()
        assert calls["n"] == 1
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_success_with_non_json_body_is_upstream_error():
    handler, calls = _scripted([httpx.Response(200, text="<html>oops</html>")])
    c = _client(handler)
    try:
        with pytest.raises(UpstreamError) as exc:
            await c.complete(CompletionRequest(prompt="hello"), "k")
        assert exc.value.status_code == 200
        assert calls["n"] == 1
    finally:
        await c.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error_cls",
    [(401, AuthenticationError), (403, AuthorizationError)],
)
async def test_auth_failures_are_never_retried(status, error_cls):
    handler, calls = _scripted([httpx.Response(status, json={"error": {"message": "nope"}})])
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper)
    try:
        with pytest.raises(error_cls) as exc:
            await c.complete(CompletionRequest(prompt="hello"), "k", RetryPolicy(max_retries=5))
        assert exc.value.status_code == status
        assert calls["n"] == 1
        assert sleeper.waits == []
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_rate_limit_exhausts_all_attempts():
    handler, calls = _scripted([httpx.Response(429, text="slow down")])
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper)
    try:
        with pytest.raises(RateLimitExceededError) as exc:
            await c.complete(CompletionRequest(prompt="hello"), "k", RetryPolicy(max_retries=3))
        assert calls["n"] == 4
        assert sleeper.waits == [1.0, 2.0, 4.0]
        assert exc.value.status_code == 429
        assert exc.value.retry_after_seconds == 60
        assert "1-2 minutes" in exc.value.message
        assert exc.value.details == "slow down"
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after_header():
    handler, calls = _scripted(
        [
            httpx.Response(429, headers={"retry-after": "2"}),
            httpx.Response(200, json=OK_BODY),
        ]
    )
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper, rng=lambda: 0.9)
    try:
        result = await c.complete(CompletionRequest(prompt="hello"), "k")
        assert result.text == "hi"
        assert sleeper.waits == [2.0]
        assert calls["n"] == 2
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_unparseable_retry_after_falls_back_to_backoff():
    handler, _ = _scripted(
        [
            httpx.Response(429, headers={"retry-after": "Wed, 21 Oct 2015 07:28:00 GMT"}),
            httpx.Response(200, json=OK_BODY),
        ]
    )
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper, rng=lambda: 0.5)
    try:
        await c.complete(CompletionRequest(prompt="hello"), "k")
        assert sleeper.waits == [1.5]
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_server_errors_then_success_waits_twice():
    handler, calls = _scripted(
        [
            httpx.Response(500),
            httpx.Response(500),
            httpx.Response(200, json={**OK_BODY, "choices": [{"message": {"content": "third"}}]}),
        ]
    )
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper)
    try:
        result = await c.complete(CompletionRequest(prompt="hello"), "k", RetryPolicy(max_retries=2))
        assert result.text == "third"
        assert len(sleeper.waits) == 2
        assert calls["n"] == 3
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_server_errors_exhausted_carry_last_status():
    handler, calls = _scripted([httpx.Response(500), httpx.Response(502), httpx.Response(503)])
    c = _client(handler)
    try:
        with pytest.raises(UpstreamServerError) as exc:
            await c.complete(CompletionRequest(prompt="hello"), "k", RetryPolicy(max_retries=2))
        assert exc.value.status_code == 503
        assert calls["n"] == 3
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt():
    handler, calls = _scripted([httpx.Response(500)])
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper)
    try:
        with pytest.raises(UpstreamServerError):
            await c.complete(CompletionRequest(prompt="hello"), "k", RetryPolicy(max_retries=0))
        assert calls["n"] == 1
        assert sleeper.waits == []
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_other_client_errors_fail_immediately_with_status_text():
    handler, calls = _scripted([httpx.Response(400, json={"error": {"message": "bad model"}})])
    c = _client(handler)
    try:
        with pytest.raises(UpstreamError) as exc:
            await c.complete(CompletionRequest(prompt="hello"), "k")
        assert exc.value.status_code == 400
        assert "400 Bad Request" in exc.value.message
        assert "bad model" in exc.value.details
        assert calls["n"] == 1
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_network_faults_are_retried_then_classified():
    handler, calls = _scripted([httpx.ConnectError("refused")])
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper)
    try:
        with pytest.raises(NetworkError) as exc:
            await c.complete(CompletionRequest(prompt="hello"), "k", RetryPolicy(max_retries=2))
        assert calls["n"] == 3
        assert len(sleeper.waits) == 2
        assert isinstance(exc.value.__cause__, httpx.ConnectError)
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_timeout_then_success_recovers():
    handler, _ = _scripted([httpx.ReadTimeout("slow"), httpx.Response(200, json=OK_BODY)])
    c = _client(handler)
    try:
        result = await c.complete(CompletionRequest(prompt="hello"), "k")
        assert result.text == "hi"
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_non_network_transport_fault_is_not_retried():
    handler, calls = _scripted([httpx.UnsupportedProtocol("ftp")])
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper)
    try:
        with pytest.raises(UpstreamError) as exc:
            await c.complete(CompletionRequest(prompt="hello"), "k")
        assert exc.value.status_code is None
        assert calls["n"] == 1
        assert sleeper.waits == []
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_repeated_runs_produce_identical_outcomes():
    outcomes = []
    for _ in range(2):
        handler, calls = _scripted([httpx.Response(503), httpx.Response(429), httpx.Response(401)])
        c = _client(handler, rng=random.random)
        try:
            with pytest.raises(AuthenticationError) as exc:
                await c.complete(CompletionRequest(prompt="hello"), "k")
            outcomes.append((type(exc.value), exc.value.status_code, calls["n"]))
        finally:
            await c.close()
    assert outcomes[0] == outcomes[1] == (AuthenticationError, 401, 3)


@pytest.mark.asyncio
async def test_cancellation_aborts_pending_wait():
    handler, calls = _scripted([httpx.Response(500)])
    started = asyncio.Event()

    async def blocking_sleep(_: float) -> None:
        started.set()
        await asyncio.Event().wait()

    c = _client(handler, sleeper=blocking_sleep)
    try:
        task = asyncio.create_task(c.complete(CompletionRequest(prompt="hello"), "k"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert calls["n"] == 1
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_deepseek_transport_uses_its_default_model():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content.decode("utf-8")))
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    c = _client(handler, transport=DeepSeekTransport())
    try:
        result = await c.complete(CompletionRequest(prompt="hello"), "k")
        assert seen["model"] == "deepseek-chat"
        assert result.model == "deepseek-chat"
        assert result.text == "ok"
    finally:
        await c.close()


@pytest.mark.asyncio
async def test_non_ascii_digit_retry_after_falls_back_to_backoff():
    handler, calls = _scripted(
        [
            httpx.Response(429, headers=[(b"retry-after", b"\xb2")]),
            httpx.Response(200, json=OK_BODY),
        ]
    )
    sleeper = SleepRecorder()
    c = _client(handler, sleeper=sleeper)
    try:
        result = await c.complete(CompletionRequest(prompt="hello"), "k")
        assert result.text == "hi"
        assert sleeper.waits == [1.0]
        assert calls["n"] == 2
    finally:
        await c.close()
