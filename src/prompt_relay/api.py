from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .contracts import CompletionResult
from .errors import ProviderError

MISSING_PROMPT_MESSAGE = "Missing required parameter: prompt"


class PromptRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (0.0 <= v <= 2.0):
            raise ValueError("temperature must be between 0 and 2.")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _validate_max_tokens(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v <= 0:
            raise ValueError("max_tokens must be > 0.")
        return v

    @field_validator("model")
    @classmethod
    def _blank_model_means_default(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class UsageBody(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResponse(BaseModel):
    text: str
    usage: UsageBody
    model: str
    raw: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: str
    kind: str
    status: int | None = None
    details: str | None = None
    request_id: str | None = Field(default=None, serialization_alias="requestId")


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "healthy"
    provider: str
    api_key_configured: bool = Field(serialization_alias="apiKeyConfigured")


def make_completion_response(result: CompletionResult) -> CompletionResponse:
    return CompletionResponse(
        text=result.text,
        usage=UsageBody(
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            total_tokens=result.usage.total_tokens,
        ),
        model=result.model,
        raw=result.raw,
    )


def make_error_response(
    *,
    message: str,
    kind: str,
    status: int | None = None,
    details: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    body = ErrorResponse(error=message, kind=kind, status=status, details=details, request_id=request_id)
    return body.model_dump(by_alias=True, exclude_none=True)


def error_response_from(exc: ProviderError, *, request_id: str | None = None) -> dict[str, Any]:
    return make_error_response(
        message=exc.message,
        kind=exc.kind.value,
        status=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )
