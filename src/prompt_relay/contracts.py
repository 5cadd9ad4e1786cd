from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from .errors import ConfigurationError, ProviderError

if TYPE_CHECKING:
    from .config import RelayConfig


DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 500


@dataclass(frozen=True)
class CompletionRequest:
    prompt: str
    model: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS

    def __post_init__(self) -> None:
        if not isinstance(self.prompt, str) or not self.prompt:
            raise ConfigurationError("prompt must be a non-empty string.")
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, (int, float)):
            raise ConfigurationError("temperature must be a number.")
        if not (0.0 <= self.temperature <= 2.0):
            raise ConfigurationError("temperature must be between 0 and 2.")
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be a positive integer.")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    jitter_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0.")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0 or self.jitter_seconds < 0:
            raise ConfigurationError("retry delays must be >= 0.")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def from_config(cls, cfg: RelayConfig) -> RetryPolicy:
        return cls(
            max_retries=cfg.upstream_max_retries,
            base_delay_seconds=cfg.upstream_base_delay_seconds,
            max_delay_seconds=cfg.upstream_max_delay_seconds,
            jitter_seconds=cfg.upstream_jitter_seconds,
        )


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_payload(cls, payload: Any) -> Usage:
        if not isinstance(payload, dict):
            return cls()

        def _int(key: str) -> int:
            value = payload.get(key)
            return value if isinstance(value, int) and not isinstance(value, bool) else 0

        return cls(
            prompt_tokens=_int("prompt_tokens"),
            completion_tokens=_int("completion_tokens"),
            total_tokens=_int("total_tokens"),
        )


@dataclass(frozen=True)
class CompletionResult:
    text: str
    usage: Usage
    model: str
    raw: dict[str, Any] | None = field(default=None, compare=False)


@dataclass(frozen=True)
class Success:
    result: CompletionResult


@dataclass(frozen=True)
class RetryableFailure:
    error: ProviderError
    suggested_wait: float | None = None


@dataclass(frozen=True)
class TerminalFailure:
    error: ProviderError


AttemptOutcome = Union[Success, RetryableFailure, TerminalFailure]
