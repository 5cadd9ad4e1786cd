from .client import ResilientCompletionClient, compute_backoff
from .config import RelayConfig
from .contracts import CompletionRequest, CompletionResult, RetryPolicy, Usage
from .errors import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ErrorKind,
    NetworkError,
    ProviderError,
    RateLimitExceededError,
    RequestTimeoutError,
    UpstreamError,
    UpstreamServerError,
)
from .provider import CompletionService
from .transports import ChatCompletionTransport, DeepSeekTransport, OpenAITransport, transport_for

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "ChatCompletionTransport",
    "CompletionRequest",
    "CompletionResult",
    "CompletionService",
    "ConfigurationError",
    "DeepSeekTransport",
    "ErrorKind",
    "NetworkError",
    "OpenAITransport",
    "ProviderError",
    "RateLimitExceededError",
    "RelayConfig",
    "RequestTimeoutError",
    "ResilientCompletionClient",
    "RetryPolicy",
    "UpstreamError",
    "UpstreamServerError",
    "Usage",
    "compute_backoff",
    "transport_for",
]
