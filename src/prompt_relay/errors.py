from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    RATE_LIMIT_EXCEEDED = "rate-limit-exceeded"
    AUTHENTICATION_ERROR = "authentication-error"
    AUTHORIZATION_ERROR = "authorization-error"
    UPSTREAM_SERVER_ERROR = "upstream-server-error"
    UPSTREAM_ERROR = "upstream-error"
    NETWORK_ERROR = "network-error"
    CONFIGURATION_ERROR = "configuration-error"
    REQUEST_TIMEOUT = "request-timeout"


class ProviderError(Exception):
    """Base error for classified completion failures."""

    kind: ErrorKind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, message: str, *, status_code: int | None = None, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.status_code is not None:
            out["status"] = self.status_code
        if self.details:
            out["details"] = self.details
        return out


class ConfigurationError(ProviderError):
    kind = ErrorKind.CONFIGURATION_ERROR


class RateLimitExceededError(ProviderError):
    kind = ErrorKind.RATE_LIMIT_EXCEEDED

    def __init__(
        self,
        message: str = "Upstream rate limit exceeded. Wait 1-2 minutes before retrying.",
        *,
        retry_after_seconds: int | None = 60,
        status_code: int | None = 429,
        details: str | None = None,
    ):
        super().__init__(message, status_code=status_code, details=details)
        self.retry_after_seconds = retry_after_seconds


class AuthenticationError(ProviderError):
    kind = ErrorKind.AUTHENTICATION_ERROR


class AuthorizationError(ProviderError):
    kind = ErrorKind.AUTHORIZATION_ERROR


class UpstreamServerError(ProviderError):
    kind = ErrorKind.UPSTREAM_SERVER_ERROR


class UpstreamError(ProviderError):
    """Non-retryable upstream failure: unexpected status, body or transport fault."""

    kind = ErrorKind.UPSTREAM_ERROR


class NetworkError(ProviderError):
    kind = ErrorKind.NETWORK_ERROR


class RequestTimeoutError(ProviderError):
    """Server-side request deadline exceeded."""

    kind = ErrorKind.REQUEST_TIMEOUT
