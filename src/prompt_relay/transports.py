"""Provider-specific request/response shapes for chat-completion upstreams."""

from __future__ import annotations

from typing import Any

from .contracts import CompletionRequest, CompletionResult, Usage
from .errors import ConfigurationError

OPENAI_API_BASE = "https://api.openai.com/v1"
DEEPSEEK_API_BASE = "https://api.deepseek.com/v1"


class ChatCompletionTransport:
    """
    Builds the outbound body and parses the upstream reply for one provider.

    Both supported providers speak the OpenAI chat-completion dialect; the
    variants differ in endpoint, default model and a few reply extras.
    """

    name = "base"
    default_base_url = OPENAI_API_BASE
    default_model = ""

    def __init__(self, base_url: str | None = None, default_model: str | None = None):
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        if default_model:
            self.default_model = default_model

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def resolve_model(self, request: CompletionRequest) -> str:
        return request.model or self.default_model

    def build_payload(self, request: CompletionRequest) -> dict[str, Any]:
        return {
            "model": self.resolve_model(request),
            "messages": [{"role": "user", "content": request.prompt}],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }

    def extract_text(self, data: dict[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        first = choices[0]
        if not isinstance(first, dict):
            return ""
        message = first.get("message")
        if not isinstance(message, dict):
            return ""
        content = message.get("content")
        return content if isinstance(content, str) else ""

    def parse_response(self, data: dict[str, Any], request: CompletionRequest) -> CompletionResult:
        model = data.get("model")
        return CompletionResult(
            text=self.extract_text(data),
            usage=Usage.from_payload(data.get("usage")),
            model=model if isinstance(model, str) and model else self.resolve_model(request),
            raw=data,
        )


class OpenAITransport(ChatCompletionTransport):
    name = "openai"
    default_base_url = OPENAI_API_BASE
    default_model = "gpt-3.5-turbo"


class DeepSeekTransport(ChatCompletionTransport):
    name = "deepseek"
    default_base_url = DEEPSEEK_API_BASE
    # deepseek-reasoner also returns message.reasoning_content; it stays in raw only.
    default_model = "deepseek-chat"


_TRANSPORTS: dict[str, type[ChatCompletionTransport]] = {
    OpenAITransport.name: OpenAITransport,
    DeepSeekTransport.name: DeepSeekTransport,
}


def transport_for(
    name: str, *, base_url: str | None = None, default_model: str | None = None
) -> ChatCompletionTransport:
    cls = _TRANSPORTS.get((name or "").strip().lower())
    if cls is None:
        raise ConfigurationError(f"Unsupported provider: {name!r}")
    return cls(base_url=base_url, default_model=default_model)
