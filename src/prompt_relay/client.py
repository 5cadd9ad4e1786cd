from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable

import httpx
import structlog

from .contracts import (
    AttemptOutcome,
    CompletionRequest,
    CompletionResult,
    RetryableFailure,
    RetryPolicy,
    Success,
    TerminalFailure,
)
from .errors import (
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    ProviderError,
    RateLimitExceededError,
    UpstreamError,
    UpstreamServerError,
)
from .metrics import upstream_attempts_total, upstream_retry_wait_seconds
from .transports import ChatCompletionTransport

log = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 30.0
_MAX_DETAILS_CHARS = 500

# Retried transport faults; any other httpx.HTTPError fails the call immediately.
NETWORK_FAULTS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    httpx.ProxyError,
)


def compute_backoff(policy: RetryPolicy, attempt: int, rng: Callable[[], float] = random.random) -> float:
    # attempt: 0-based index of the failed attempt (0 for first retry)
    base = policy.base_delay_seconds * (2**attempt)
    return float(min(base + rng() * policy.jitter_seconds, policy.max_delay_seconds))


def parse_retry_after(value: str | None) -> int | None:
    if value is None:
        return None
    value = value.strip()
    return int(value) if value.isascii() and value.isdigit() else None


class ResilientCompletionClient:
    """
    Drives one chat-completion call through classification and retries.

    Retries 429 (honouring ``Retry-After``), 5xx and network faults with
    exponential backoff; 401/403 and other 4xx fail on the first attempt.
    Terminal failures are raised as ``ProviderError`` subclasses.
    """

    def __init__(
        self,
        transport: ChatCompletionTransport,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        rng: Callable[[], float] | None = None,
    ):
        self.transport = transport
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._rng: Callable[[], float] = rng or random.random

    async def close(self) -> None:
        await self._client.aclose()

    def _classify_response(
        self, resp: httpx.Response, request: CompletionRequest, *, can_retry: bool
    ) -> AttemptOutcome:
        status = resp.status_code

        if resp.is_success:
            try:
                data = resp.json()
            except ValueError:
                data = None
            if not isinstance(data, dict):
                return TerminalFailure(
                    UpstreamError(
                        "Upstream returned a success status with a non-JSON body.",
                        status_code=status,
                        details=resp.text[:_MAX_DETAILS_CHARS],
                    )
                )
            return Success(self.transport.parse_response(data, request))

        details = resp.text[:_MAX_DETAILS_CHARS]

        if status == 401:
            return TerminalFailure(
                AuthenticationError("Upstream rejected the API key.", status_code=status, details=details)
            )
        if status == 403:
            return TerminalFailure(
                AuthorizationError("Upstream denied access for this API key.", status_code=status, details=details)
            )
        if status == 429:
            if not can_retry:
                return TerminalFailure(RateLimitExceededError(details=details))
            retry_after = parse_retry_after(resp.headers.get("retry-after"))
            return RetryableFailure(
                RateLimitExceededError(details=details),
                suggested_wait=float(retry_after) if retry_after is not None else None,
            )
        if status >= 500:
            err = UpstreamServerError(f"Upstream server error {status}.", status_code=status, details=details)
            return RetryableFailure(err) if can_retry else TerminalFailure(err)

        return TerminalFailure(
            UpstreamError(f"Upstream error: {status} {resp.reason_phrase}".rstrip(), status_code=status, details=details)
        )

    async def _attempt(
        self, request: CompletionRequest, api_key: str, *, can_retry: bool
    ) -> AttemptOutcome:
        try:
            resp = await self._client.post(
                self.transport.url,
                headers=self.transport.headers(api_key),
                json=self.transport.build_payload(request),
            )
        except NETWORK_FAULTS as e:
            err = NetworkError(f"Upstream request failed: {type(e).__name__}.")
            err.__cause__ = e
            return RetryableFailure(err) if can_retry else TerminalFailure(err)
        except httpx.HTTPError as e:
            err = UpstreamError(f"Upstream request could not be sent: {type(e).__name__}.")
            err.__cause__ = e
            return TerminalFailure(err)
        return self._classify_response(resp, request, can_retry=can_retry)

    async def complete(
        self,
        request: CompletionRequest,
        api_key: str,
        policy: RetryPolicy | None = None,
    ) -> CompletionResult:
        policy = policy or RetryPolicy()
        provider = self.transport.name
        last_error: ProviderError | None = None

        for attempt in range(policy.max_attempts):
            can_retry = attempt < policy.max_retries
            outcome = await self._attempt(request, api_key, can_retry=can_retry)

            if isinstance(outcome, Success):
                upstream_attempts_total.labels(provider=provider, outcome="success").inc()
                log.debug(
                    "completion_ok",
                    provider=provider,
                    attempt=attempt,
                    model=outcome.result.model,
                    total_tokens=outcome.result.usage.total_tokens,
                )
                return outcome.result

            upstream_attempts_total.labels(provider=provider, outcome=outcome.error.kind.value).inc()
            last_error = outcome.error

            if isinstance(outcome, TerminalFailure):
                log.warning(
                    "completion_failed",
                    provider=provider,
                    attempt=attempt,
                    kind=outcome.error.kind.value,
                    status_code=outcome.error.status_code,
                    details=outcome.error.details,
                )
                raise outcome.error

            wait = outcome.suggested_wait
            if wait is None:
                wait = compute_backoff(policy, attempt, self._rng)
            upstream_retry_wait_seconds.labels(provider=provider).observe(wait)
            log.info(
                "completion_retry",
                provider=provider,
                attempt=attempt,
                kind=outcome.error.kind.value,
                status_code=outcome.error.status_code,
                wait_seconds=round(wait, 3),
            )
            await self._sleep(wait)

        # The final attempt is never classified retryable.
        raise last_error or UpstreamError("Upstream request failed after retries.")  # pragma: no cover
