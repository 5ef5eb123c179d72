from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .contracts import ChatResult, CompletionResult
from .errors import EngineError, RateLimitError


def _validate_temperature(v: float | None) -> float | None:
    if v is None:
        return None
    if not (0.0 <= v <= 2.0):
        raise ValueError("temperature must be between 0 and 2.")
    return v


def _validate_text(v: str) -> str:
    if not v.strip():
        raise ValueError("text must be non-empty.")
    return v


class CompletionRequestBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str
    mode: Literal["short", "medium", "long"] = "short"
    style_text: str | None = None
    model: str | None = None
    temperature: float | None = None
    context_id: str | None = Field(default=None, max_length=128)

    @field_validator("text")
    @classmethod
    def _check_text(cls, v: str) -> str:
        return _validate_text(v)

    @field_validator("temperature")
    @classmethod
    def _check_temperature(cls, v: float | None) -> float | None:
        return _validate_temperature(v)


class RewriteRequestBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str
    style_text: str | None = None
    model: str | None = None
    temperature: float | None = None
    context_id: str | None = Field(default=None, max_length=128)

    @field_validator("text")
    @classmethod
    def _check_text(cls, v: str) -> str:
        return _validate_text(v)

    @field_validator("temperature")
    @classmethod
    def _check_temperature(cls, v: float | None) -> float | None:
        return _validate_temperature(v)


class ChatRequestBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str
    style_text: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = Field(default=None, gt=0)

    @field_validator("message")
    @classmethod
    def _check_message(cls, v: str) -> str:
        return _validate_text(v)

    @field_validator("temperature")
    @classmethod
    def _check_temperature(cls, v: float | None) -> float | None:
        return _validate_temperature(v)


class CompletionResponseBody(BaseModel):
    items: list[str]
    model_used: str
    used_fallback: bool


class ChatResponseBody(BaseModel):
    text: str
    model_used: str
    used_fallback: bool


class ModelInfo(BaseModel):
    id: str
    name: str
    context_length: int | None = None
    supported_parameters: list[str] = Field(default_factory=list)
    supports_structured_output: bool = False
    is_reasoning_model: bool = False


class ModelListResponse(BaseModel):
    data: list[ModelInfo]


class ErrorDetail(BaseModel):
    type: str
    message: str
    hint: str | None = None
    retry_after_seconds: int | None = None
    request_id: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


def completion_response(result: CompletionResult) -> CompletionResponseBody:
    return CompletionResponseBody(items=list(result.items), model_used=result.model_used, used_fallback=result.used_fallback)


def chat_response(result: ChatResult) -> ChatResponseBody:
    return ChatResponseBody(text=result.text, model_used=result.model_used, used_fallback=result.used_fallback)


def error_response(exc: EngineError, *, request_id: str | None = None) -> dict[str, Any]:
    retry_after = exc.retry_after_seconds if isinstance(exc, RateLimitError) else None
    return ErrorResponse(
        error=ErrorDetail(
            type=exc.code,
            message=str(exc),
            hint=exc.hint,
            retry_after_seconds=retry_after,
            request_id=request_id,
        )
    ).model_dump()
