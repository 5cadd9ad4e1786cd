from __future__ import annotations

import asyncio
import json
import os
import time
from contextlib import asynccontextmanager

import structlog
from pydantic import ValidationError

try:
    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse, PlainTextResponse
except ImportError as e:  # pragma: no cover
    raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

from .api import (
    MISSING_PROMPT_MESSAGE,
    HealthResponse,
    PromptRequest,
    error_response_from,
    make_completion_response,
    make_error_response,
)
from .config import RelayConfig
from .errors import ErrorKind, ProviderError, RateLimitExceededError, RequestTimeoutError
from .http_security import install_middlewares
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_requests_total
from .provider import CompletionService

log = structlog.get_logger()

_STATUS_BY_KIND = {
    ErrorKind.RATE_LIMIT_EXCEEDED: 429,
    ErrorKind.AUTHENTICATION_ERROR: 401,
    ErrorKind.AUTHORIZATION_ERROR: 403,
    ErrorKind.REQUEST_TIMEOUT: 504,
}


def http_status_for(exc: ProviderError) -> int:
    return _STATUS_BY_KIND.get(exc.kind, 500)


def create_app(cfg: RelayConfig | None = None, service: CompletionService | None = None):
    cfg = cfg or RelayConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secrets())
    service = service or CompletionService(cfg)

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _bad_request(request, message: str) -> JSONResponse:
        server_errors_total.labels(kind="invalid-request").inc()
        server_requests_total.labels(path="/", status="400").inc()
        return JSONResponse(
            status_code=400,
            content=make_error_response(message=message, kind="invalid-request", request_id=_request_id(request)),
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await service.close()

    app = FastAPI(
        title="prompt-relay",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(ProviderError)
    async def _provider_error_handler(request, exc: ProviderError):
        status_code = http_status_for(exc)
        server_errors_total.labels(kind=exc.kind.value).inc()
        server_requests_total.labels(path="/", status=str(status_code)).inc()
        headers = {}
        if isinstance(exc, RateLimitExceededError) and exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(exc.retry_after_seconds)
        return JSONResponse(
            status_code=status_code,
            content=error_response_from(exc, request_id=_request_id(request)),
            headers=headers,
        )

    async def _health() -> dict:
        return HealthResponse(
            provider=service.provider_name,
            api_key_configured=service.api_key_configured,
        ).model_dump(by_alias=True)

    app.get("/")(_health)
    app.get("/healthz")(_health)

    @app.api_route("/", methods=["PUT", "PATCH", "DELETE"])
    async def _not_found():
        return PlainTextResponse("Not Found", status_code=404)

    @app.post("/")
    async def complete(request: Request):
        started_at = time.monotonic()
        try:
            payload = json.loads(await request.body() or b"null")
        except (ValueError, RecursionError):
            return _bad_request(request, "Request body must be valid JSON.")
        if not isinstance(payload, dict) or not payload.get("prompt"):
            return _bad_request(request, MISSING_PROMPT_MESSAGE)
        try:
            body = PromptRequest.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            return _bad_request(request, f"Invalid parameter {'.'.join(map(str, first['loc']))}: {first['msg']}")
        if not isinstance(body.prompt, str) or not body.prompt:
            return _bad_request(request, MISSING_PROMPT_MESSAGE)

        deadline = max(0.0, float(cfg.request_timeout_seconds or 0)) or None
        try:
            result = await asyncio.wait_for(
                service.complete(
                    body.prompt,
                    model=body.model,
                    temperature=body.temperature,
                    max_tokens=body.max_tokens,
                ),
                timeout=deadline,
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError("Request timed out.") from e

        server_requests_total.labels(path="/", status="200").inc()
        log.info("request_ok", latency_seconds=round(time.monotonic() - started_at, 3), model=result.model)
        return make_completion_response(result).model_dump()

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("prompt_relay.server:create_app", host=host, port=port, factory=True)


if __name__ == "__main__":  # pragma: no cover
    main()
