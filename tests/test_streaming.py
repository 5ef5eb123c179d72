import pytest

from completion_orchestrator.contracts import Content, Empty, Reasoning
from completion_orchestrator.streaming import StreamAccumulator, accumulate_stream, iter_sse_events


async def _lines(*items):
    for item in items:
        yield item


@pytest.mark.asyncio
async def test_iter_sse_events_skips_noise_and_stops_at_done():
    events = [
        e
        async for e in iter_sse_events(
            _lines(
                ": OPENROUTER PROCESSING",
                "",
                "event: message",
                'data: {"choices": [{"delta": {"content": "a"}}]}',
                "data: {not json",
                'data: {"choices": [{"delta": {"content": "b"}}]}',
                "data: [DONE]",
                'data: {"choices": [{"delta": {"content": "late"}}]}',
            )
        )
    ]
    assert [e["choices"][0]["delta"]["content"] for e in events] == ["a", "b"]


@pytest.mark.asyncio
async def test_accumulate_prefers_content_over_reasoning():
    acc = await accumulate_stream(
        _lines(
            'data: {"choices": [{"delta": {"reasoning": "hmm "}}]}',
            'data: {"choices": [{"delta": {"content": "answer"}, "finish_reason": "stop"}]}',
        )
    )
    assert acc.result() == Content("answer")
    assert acc.finish_reason == "stop"
    assert acc.chunks == 2


@pytest.mark.asyncio
async def test_accumulate_stops_on_error_event():
    acc = await accumulate_stream(
        _lines(
            'data: {"error": {"code": 429, "message": "slow down"}}',
            'data: {"choices": [{"delta": {"content": "never"}}]}',
        )
    )
    assert acc.error == {"code": 429, "message": "slow down"}
    assert acc.result() == Empty()


def test_alternate_delta_locations():
    acc = StreamAccumulator()
    acc.feed({"choices": [{"delta": {"message": {"content": "x"}}}]})
    acc.feed({"choices": [{"text": "y"}]})
    acc.feed({"choices": []})
    acc.feed({"nothing": True})
    assert acc.result() == Content("xy")


def test_reasoning_only_stream():
    acc = StreamAccumulator()
    acc.feed({"choices": [{"delta": {"reasoning": "1. a"}}]})
    acc.feed({"choices": [{"delta": {"reasoning": "\n2. b"}}]})
    assert acc.result() == Reasoning("1. a\n2. b")


def test_whitespace_only_stream_is_empty():
    acc = StreamAccumulator()
    acc.feed({"choices": [{"delta": {"content": "  "}}]})
    assert isinstance(acc.result(), Empty)
