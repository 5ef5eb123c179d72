from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

COMPLETION_CARDINALITY = 5
REWRITE_CARDINALITY = 3


class CompletionMode(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    REWRITE = "rewrite"

    @property
    def cardinality(self) -> int:
        return REWRITE_CARDINALITY if self is CompletionMode.REWRITE else COMPLETION_CARDINALITY


class PromptVariant(str, Enum):
    SCHEMA = "schema"
    NUMBERED = "numbered"
    SIMPLIFIED_NUMBERED = "simplifiedNumbered"


@dataclass(frozen=True)
class ModelCapability:
    model_id: str
    supports_structured_output: bool
    is_reasoning_model: bool
    resolved_at: float


@dataclass(frozen=True)
class CompletionRequest:
    source_text: str
    mode: CompletionMode
    cardinality: int
    temperature: float
    token_budget: int
    style_text: str | None = None


@dataclass(frozen=True)
class Attempt:
    model_id: str
    prompt_variant: PromptVariant
    reasoning_excluded: bool
    stream: bool = False


@dataclass(frozen=True)
class OutboundRequest:
    """A fully composed chat-completion call for one attempt."""

    model: str
    messages: list[dict[str, str]]
    temperature: float
    max_tokens: int
    stream: bool = False
    response_format: dict[str, Any] | None = None
    reasoning_excluded: bool = False
    variant: PromptVariant | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": self.stream,
        }
        if self.response_format is not None:
            payload["response_format"] = self.response_format
        if self.reasoning_excluded:
            payload["reasoning"] = {"exclude": True}
        return payload


@dataclass(frozen=True)
class CompletionResult:
    items: tuple[str, ...]
    model_used: str
    used_fallback: bool


@dataclass(frozen=True)
class ChatResult:
    text: str
    model_used: str
    used_fallback: bool


# Upstream payloads arrive in heterogeneous shapes; transport collapses them into one of these tags.


@dataclass(frozen=True)
class Content:
    text: str
    tag: str = field(default="content", init=False)


@dataclass(frozen=True)
class Reasoning:
    text: str
    tag: str = field(default="reasoning", init=False)


@dataclass(frozen=True)
class Empty:
    encrypted_reasoning: bool = False
    tag: str = field(default="empty", init=False)


RawPayload = Union[Content, Reasoning, Empty]


def payload_text(payload: RawPayload, accepted: tuple[type, ...]) -> str:
    """Return the payload's text when its tag is acceptable, else an empty string."""
    if isinstance(payload, Empty) or not isinstance(payload, accepted):
        return ""
    return payload.text
