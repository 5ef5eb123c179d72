from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import structlog

from .contracts import Content, Empty, RawPayload, Reasoning

log = structlog.get_logger()

# Providers disagree on where streamed text lives; every location is checked on every chunk.
_CONTENT_PATHS: tuple[tuple[str, ...], ...] = (
    ("delta", "content"),
    ("delta", "message", "content"),
    ("delta", "text"),
    ("message", "content"),
    ("text",),
)
_REASONING_PATHS: tuple[tuple[str, ...], ...] = (
    ("delta", "reasoning"),
    ("reasoning",),
)


def _dig(obj: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _first_text(choice: dict[str, Any], paths: tuple[tuple[str, ...], ...]) -> str:
    for path in paths:
        value = _dig(choice, path)
        if isinstance(value, str) and value:
            return value
    return ""


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Decode `data:` lines into JSON events until `[DONE]` or the stream closes."""
    async for line in lines:
        line = line.strip()
        if not line or line.startswith(":"):
            continue
        if not line.startswith("data:"):
            continue
        raw = line[len("data:") :].strip()
        if not raw:
            continue
        if raw == "[DONE]":
            return
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            log.debug("stream_chunk_undecodable", preview=raw[:100])
            continue
        if isinstance(event, dict):
            yield event


class StreamAccumulator:
    def __init__(self) -> None:
        self._content: list[str] = []
        self._reasoning: list[str] = []
        self.finish_reason: str | None = None
        self.error: dict[str, Any] | None = None
        self.chunks = 0

    def feed(self, event: dict[str, Any]) -> None:
        self.chunks += 1
        error = event.get("error")
        if isinstance(error, dict):
            self.error = error
            return
        choices = event.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return
        choice = choices[0]
        content = _first_text(choice, _CONTENT_PATHS)
        if content:
            self._content.append(content)
        reasoning = _first_text(choice, _REASONING_PATHS)
        if reasoning:
            self._reasoning.append(reasoning)
        if choice.get("finish_reason"):
            self.finish_reason = str(choice["finish_reason"])

    def result(self) -> RawPayload:
        content = "".join(self._content)
        if content.strip():
            return Content(content)
        reasoning = "".join(self._reasoning)
        if reasoning.strip():
            return Reasoning(reasoning)
        return Empty()


async def accumulate_stream(lines: AsyncIterator[str]) -> StreamAccumulator:
    acc = StreamAccumulator()
    async for event in iter_sse_events(lines):
        acc.feed(event)
        if acc.error is not None:
            break
    return acc
