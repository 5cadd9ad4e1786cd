from __future__ import annotations

import time

import structlog

from .client import ResilientCompletionClient
from .config import RelayConfig
from .contracts import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, CompletionRequest, CompletionResult, RetryPolicy
from .errors import ConfigurationError, ProviderError
from .logging import mask_secret
from .metrics import completion_latency_seconds
from .transports import transport_for

log = structlog.get_logger()


class CompletionService:
    """Binds configuration (provider, key, retry policy) to a completion client."""

    def __init__(self, cfg: RelayConfig, *, client: ResilientCompletionClient | None = None):
        self.cfg = cfg
        self.policy = RetryPolicy.from_config(cfg)
        self.client = client or ResilientCompletionClient(
            transport_for(cfg.provider, base_url=cfg.base_url, default_model=cfg.default_model),
            timeout_seconds=cfg.upstream_timeout_seconds,
        )

    @property
    def provider_name(self) -> str:
        return self.client.transport.name

    @property
    def api_key_configured(self) -> bool:
        return bool(self.cfg.api_key_for(self.provider_name))

    async def close(self) -> None:
        await self.client.close()

    async def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        request = CompletionRequest(
            prompt=prompt,
            model=model,
            temperature=DEFAULT_TEMPERATURE if temperature is None else temperature,
            max_tokens=DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens,
        )

        api_key = self.cfg.api_key_for(self.provider_name)
        if not api_key:
            log.error("api_key_missing", provider=self.provider_name)
            raise ConfigurationError("Configuration error: API key is missing")

        provider = self.provider_name
        log.info("completion_start", provider=provider, key_prefix=mask_secret(api_key), prompt_chars=len(prompt))
        start = time.monotonic()
        try:
            with completion_latency_seconds.labels(provider=provider).time():
                return await self.client.complete(request, api_key, self.policy)
        except ProviderError as e:
            log.warning("completion_error", provider=provider, kind=e.kind.value, error=e.message)
            raise
        finally:
            log.debug("completion_done", provider=provider, elapsed_seconds=round(time.monotonic() - start, 3))
