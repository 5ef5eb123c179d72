import asyncio

import httpx
import pytest

from completion_orchestrator.capabilities import CapabilityCache, ModelCapabilityResolver, ReasoningPolicy
from completion_orchestrator.config import EngineConfig

CATALOG = {
    "data": [
        {
            "id": "openai/gpt-4o",
            "name": "GPT-4o",
            "context_length": 128000,
            "supported_parameters": ["temperature", "response_format", "structured_outputs"],
        },
        {"id": "meta/llama-3", "name": "Llama 3", "supported_parameters": ["temperature"]},
    ]
}


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _resolver(handler, *, clock=None, ttl=3600):
    cfg = EngineConfig(api_base_url="https://example.test/api/v1", capability_ttl_seconds=ttl)
    return ModelCapabilityResolver(
        cfg,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        cache=CapabilityCache(ttl, clock=clock or Clock()),
    )


@pytest.mark.asyncio
async def test_resolve_reads_structured_output_from_catalog():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json=CATALOG)

    r = _resolver(handler)
    try:
        gpt = await r.resolve("openai/gpt-4o")
        llama = await r.resolve("meta/llama-3")
        assert gpt.supports_structured_output is True
        assert llama.supports_structured_output is False
        # One catalog fetch serves every lookup inside the TTL.
        await r.resolve("openai/gpt-4o")
        assert calls == ["/api/v1/models"]
    finally:
        await r.close()


@pytest.mark.asyncio
async def test_unknown_model_defaults_to_no_structured_output():
    r = _resolver(lambda _: httpx.Response(200, json=CATALOG))
    try:
        cap = await r.resolve("deepseek/deepseek-r1")
        assert cap.supports_structured_output is False
        assert cap.is_reasoning_model is True
    finally:
        await r.close()


@pytest.mark.asyncio
async def test_registry_failure_defaults_without_raising():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="down")

    r = _resolver(handler)
    try:
        cap = await r.resolve("openai/gpt-4o")
        assert cap.supports_structured_output is False
        # Nothing is cached while no snapshot exists.
        assert r.cache.get("openai/gpt-4o") is None
    finally:
        await r.close()


@pytest.mark.asyncio
async def test_failed_refresh_is_not_retried_inside_window():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        raise httpx.ConnectError("down", request=request)

    r = _resolver(handler)
    try:
        await r.resolve("a/b")
        await r.resolve("c/d")
        assert len(calls) == 1
    finally:
        await r.close()


@pytest.mark.asyncio
async def test_stale_snapshot_is_served_while_refreshing():
    clock = Clock()
    catalogs = [CATALOG, {"data": [{"id": "openai/gpt-4o", "supported_parameters": []}]}]
    calls = []

    def handler(_: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(200, json=catalogs[min(len(calls), 2) - 1])

    r = _resolver(handler, clock=clock, ttl=60)
    try:
        assert (await r.resolve("openai/gpt-4o")).supports_structured_output is True

        clock.now += 120
        stale = await r.resolve("openai/gpt-4o")
        # The old answer comes back at once; the catalog refresh runs in the background.
        assert stale.supports_structured_output is True
        await asyncio.sleep(0)
        await r._refresh_task
        assert len(calls) == 2

        fresh = await r.resolve("openai/gpt-4o")
        assert fresh.supports_structured_output is False
    finally:
        await r.close()


@pytest.mark.asyncio
async def test_list_models_reports_derived_flags():
    r = _resolver(lambda _: httpx.Response(200, json=CATALOG))
    try:
        models = await r.list_models()
        assert [m["id"] for m in models] == ["meta/llama-3", "openai/gpt-4o"]
        assert models[1]["supports_structured_output"] is True
        assert models[1]["context_length"] == 128000
        assert models[0]["name"] == "Llama 3"
    finally:
        await r.close()


def test_cache_ttl_expiry():
    clock = Clock()
    cache = CapabilityCache(10, clock=clock)
    assert cache.is_stale()
    cache.mark_attempted()
    assert not cache.is_stale()
    clock.now += 10
    assert cache.is_stale()


def test_reasoning_policy_allow_lists_are_configurable():
    policy = ReasoningPolicy(EngineConfig(reasoning_model_patterns=["magic"], streaming_reasoning_patterns=[]))
    assert policy.is_reasoning_model("vendor/Magic-7b")
    assert not policy.is_reasoning_model("deepseek/deepseek-r1")
    assert policy.supports_reasoning_exclusion("vendor/magic-7b")


def test_default_reasoning_policy():
    policy = ReasoningPolicy(EngineConfig())
    assert policy.needs_streamed_accumulation("openai/o1-mini")
    assert not policy.supports_reasoning_exclusion("openai/o1-mini")
    assert not policy.supports_reasoning_exclusion("openai/gpt-5")
    assert policy.reasoning_channel_is_answer("qwen/qwq-32b")
    assert not policy.reasoning_channel_is_answer("openai/gpt-5")
    assert not policy.is_reasoning_model("google/gemini-2.5-flash-lite")
