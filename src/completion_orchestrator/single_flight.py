from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from .errors import SupersededError

log = structlog.get_logger()

T = TypeVar("T")


class SingleFlight:
    """
    At most one in-flight orchestration per triggering context.

    A newer call for the same key cancels the older one; the older caller
    receives `SupersededError` instead of a stale result.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task] = {}

    def inflight(self, key: str) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def run(self, key: str | None, factory: Callable[[], Awaitable[T]]) -> T:
        if not key:
            return await factory()

        previous = self._inflight.get(key)
        if previous is not None and not previous.done():
            log.info("single_flight_superseded", context_id=key)
            previous.cancel()

        task: asyncio.Task = asyncio.ensure_future(factory())
        self._inflight[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._inflight.get(key) is not task:
                raise SupersededError(f"Request for context {key!r} was superseded.") from None
            raise
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]
