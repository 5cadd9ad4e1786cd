from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


SUPPORTED_PROVIDERS = ("openai", "deepseek")


class RelayConfig(BaseModel):
    # Upstream selection
    provider: str = Field(default_factory=lambda: os.getenv("LLM_PROVIDER", "openai").lower())
    openai_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    deepseek_api_key: str | None = Field(default_factory=lambda: os.getenv("DEEPSEEK_API_KEY"))
    base_url: str | None = Field(default_factory=lambda: os.getenv("LLM_BASE_URL"))
    default_model: str | None = Field(default_factory=lambda: os.getenv("DEFAULT_MODEL"))

    # Retry policy and per-attempt timeout
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))
    )
    upstream_max_retries: int = Field(default_factory=lambda: int(os.getenv("UPSTREAM_MAX_RETRIES", "3")))
    upstream_base_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_BASE_DELAY_SECONDS", "1.0"))
    )
    upstream_max_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_MAX_DELAY_SECONDS", "10.0"))
    )
    upstream_jitter_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_JITTER_SECONDS", "1.0"))
    )

    # End-to-end deadline for one inbound request (0 disables)
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT_SECONDS", "180"))
    )

    # Observability
    enable_metrics: bool = Field(
        default_factory=lambda: os.getenv("ENABLE_METRICS", "false").lower() == "true"
    )
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # HTTP surface
    enable_api_docs: bool = Field(
        default_factory=lambda: os.getenv("ENABLE_API_DOCS", "false").lower() == "true"
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: _parse_csv(os.getenv("CORS_ALLOW_ORIGINS", "*"))
    )
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )

    @field_validator("provider")
    @classmethod
    def _validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SUPPORTED_PROVIDERS:
            raise ValueError(f"provider must be one of {', '.join(SUPPORTED_PROVIDERS)}.")
        return v

    @field_validator("upstream_max_retries")
    @classmethod
    def _validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("upstream_max_retries must be >= 0.")
        return v

    def api_key_for(self, provider: str | None = None) -> str | None:
        provider = provider or self.provider
        if provider == "deepseek":
            return self.deepseek_api_key
        return self.openai_api_key

    def secrets(self) -> list[str]:
        return [s for s in (self.openai_api_key, self.deepseek_api_key) if s]
