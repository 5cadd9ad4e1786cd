from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog


_SENSITIVE_KEYS = {
    "authorization",
    "proxy-authorization",
    "x-api-key",
    "api_key",
    "apikey",
    "openai_api_key",
    "deepseek_api_key",
}

# "token" alone would also hit usage counters such as prompt_tokens
_SENSITIVE_FRAGMENTS = ("api_key", "access_token", "auth_token", "secret", "password")

# OpenAI and DeepSeek keys both start with "sk-"
_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")
_SK_KEY_RE = re.compile(r"\bsk-[A-Za-z0-9_-]{8,}")

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]


def mask_secret(value: str | None, *, visible: int = 3) -> str:
    """Render a credential as its first few characters, e.g. ``sk-...``."""
    if not value:
        return "<missing>"
    return value[:visible] + "..."


def redact_text(value: str, *, secrets: list[str] | None = None) -> str:
    out = value
    for secret in secrets or []:
        if secret and secret in out:
            out = out.replace(secret, "[REDACTED]")
    out = _BEARER_RE.sub("Bearer [REDACTED]", out)
    out = _SK_KEY_RE.sub("[REDACTED]", out)
    return out


def _is_sensitive_key(key: Any) -> bool:
    key_str = str(key).lower()
    return key_str in _SENSITIVE_KEYS or any(s in key_str for s in _SENSITIVE_FRAGMENTS)


def _redact(obj: Any, *, secrets: list[str]) -> Any:
    if isinstance(obj, str):
        return redact_text(obj, secrets=secrets)
    if isinstance(obj, list):
        return [_redact(v, secrets=secrets) for v in obj]
    if isinstance(obj, tuple):
        return tuple(_redact(v, secrets=secrets) for v in obj)
    if isinstance(obj, dict):
        return {k: "[REDACTED]" if _is_sensitive_key(k) else _redact(v, secrets=secrets) for k, v in obj.items()}
    return obj


def make_redaction_processor(*, secrets: list[str] | None = None) -> Processor:
    secrets_norm = [s for s in (secrets or []) if isinstance(s, str) and s]

    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], _redact(dict(event_dict), secrets=secrets_norm))

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level)

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        make_redaction_processor(secrets=secrets),
    ]

    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
