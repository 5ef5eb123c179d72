from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from .config import EngineConfig
from .contracts import ModelCapability
from .metrics import capability_registry_refresh_total

log = structlog.get_logger()


def matches_any(model_id: str, patterns: Iterable[str]) -> bool:
    lowered = model_id.lower()
    return any(p and p.lower() in lowered for p in patterns)


class ReasoningPolicy:
    """Allow-list driven classification of reasoning model behavior."""

    def __init__(self, cfg: EngineConfig):
        self.cfg = cfg

    def is_reasoning_model(self, model_id: str) -> bool:
        return matches_any(model_id, self.cfg.reasoning_model_patterns)

    def needs_streamed_accumulation(self, model_id: str) -> bool:
        return self.is_reasoning_model(model_id) and matches_any(model_id, self.cfg.streaming_reasoning_patterns)

    def supports_reasoning_exclusion(self, model_id: str) -> bool:
        return not (
            self.needs_streamed_accumulation(model_id)
            or matches_any(model_id, self.cfg.exclusion_unsupported_patterns)
        )

    def reasoning_channel_is_answer(self, model_id: str) -> bool:
        """Whether a non-streamed `reasoning` field may stand in for missing content."""
        return self.is_reasoning_model(model_id) and not matches_any(
            model_id, self.cfg.reasoning_channel_ignored_patterns
        )


@dataclass(frozen=True)
class RegistrySnapshot:
    models: dict[str, dict[str, Any]]
    fetched_at: float


class CapabilityCache:
    """
    Holds the last good registry snapshot and the capabilities derived from it.

    The snapshot is replaced wholesale, so concurrent readers always see either
    the old or the new catalog.
    """

    def __init__(self, ttl_seconds: float = 3600.0, *, clock: Callable[[], float] | None = None):
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock: Callable[[], float] = clock or time.time
        self.snapshot: RegistrySnapshot | None = None
        self.last_refreshed: float | None = None
        self._derived: dict[str, ModelCapability] = {}

    def now(self) -> float:
        return self._clock()

    def is_stale(self) -> bool:
        if self.last_refreshed is None:
            return True
        return self.now() - self.last_refreshed >= self.ttl_seconds

    def replace(self, snapshot: RegistrySnapshot) -> None:
        self.snapshot = snapshot
        self.last_refreshed = snapshot.fetched_at
        self._derived = {}

    def mark_attempted(self) -> None:
        # A failed refresh still waits a full window before the next try.
        self.last_refreshed = self.now()

    def get(self, model_id: str) -> ModelCapability | None:
        cap = self._derived.get(model_id)
        if cap is None:
            return None
        if self.now() - cap.resolved_at >= self.ttl_seconds:
            return None
        return cap

    def put(self, cap: ModelCapability) -> None:
        derived = dict(self._derived)
        derived[cap.model_id] = cap
        self._derived = derived


class ModelCapabilityResolver:
    def __init__(
        self,
        cfg: EngineConfig,
        *,
        client: httpx.AsyncClient | None = None,
        cache: CapabilityCache | None = None,
        policy: ReasoningPolicy | None = None,
    ):
        self.cfg = cfg
        self.policy = policy or ReasoningPolicy(cfg)
        self._client = client or httpx.AsyncClient(timeout=cfg.registry_timeout_seconds)
        self.cache = cache or CapabilityCache(cfg.capability_ttl_seconds)
        self._refresh_task: asyncio.Task[RegistrySnapshot | None] | None = None

    async def close(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
        await self._client.aclose()

    async def refresh(self) -> RegistrySnapshot | None:
        """Fetch the full catalog. Failures keep the last good snapshot."""
        url = f"{self.cfg.api_base_url.rstrip('/')}/models"
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
            data = resp.json()
            entries = data.get("data") if isinstance(data, dict) else None
            if not isinstance(entries, list):
                raise ValueError("catalog response has no data list")
        except (httpx.HTTPError, ValueError) as e:
            self.cache.mark_attempted()
            capability_registry_refresh_total.labels(status="error").inc()
            log.warning("capability_registry_refresh_failed", error=str(e), has_snapshot=self.cache.snapshot is not None)
            return self.cache.snapshot

        models = {
            str(m["id"]): m for m in entries if isinstance(m, dict) and isinstance(m.get("id"), str)
        }
        snapshot = RegistrySnapshot(models=models, fetched_at=self.cache.now())
        self.cache.replace(snapshot)
        capability_registry_refresh_total.labels(status="success").inc()
        log.info("capability_registry_refreshed", models=len(models))
        return snapshot

    def schedule_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.get_running_loop().create_task(self.refresh())

    async def _current_snapshot(self) -> RegistrySnapshot | None:
        if self.cache.snapshot is None:
            if self.cache.last_refreshed is not None and not self.cache.is_stale():
                return None
            return await self.refresh()
        if self.cache.is_stale():
            self.schedule_refresh()
        return self.cache.snapshot

    def _advertises_structured_output(self, meta: dict[str, Any] | None) -> bool:
        if not meta:
            return False
        params = meta.get("supported_parameters") or []
        if not isinstance(params, list):
            return False
        wanted = set(self.cfg.structured_output_parameters)
        return any(p in wanted for p in params)

    async def resolve(self, model_id: str) -> ModelCapability:
        cached = self.cache.get(model_id)
        if cached is not None:
            if self.cache.is_stale():
                self.schedule_refresh()
            return cached

        snapshot = await self._current_snapshot()
        meta = snapshot.models.get(model_id) if snapshot is not None else None
        if snapshot is not None and meta is None:
            log.info("capability_model_unknown", model=model_id)

        cap = ModelCapability(
            model_id=model_id,
            supports_structured_output=self._advertises_structured_output(meta),
            is_reasoning_model=self.policy.is_reasoning_model(model_id),
            resolved_at=self.cache.now(),
        )
        if snapshot is not None:
            self.cache.put(cap)
        log.debug(
            "capability_resolved",
            model=model_id,
            structured_output=cap.supports_structured_output,
            reasoning=cap.is_reasoning_model,
        )
        return cap

    async def list_models(self) -> list[dict[str, Any]]:
        snapshot = await self._current_snapshot()
        if snapshot is None:
            return []
        out: list[dict[str, Any]] = []
        for model_id in sorted(snapshot.models):
            meta = snapshot.models[model_id]
            out.append(
                {
                    "id": model_id,
                    "name": meta.get("name") or model_id,
                    "context_length": meta.get("context_length"),
                    "supported_parameters": list(meta.get("supported_parameters") or []),
                    "supports_structured_output": self._advertises_structured_output(meta),
                    "is_reasoning_model": self.policy.is_reasoning_model(model_id),
                }
            )
        return out
