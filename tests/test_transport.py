import json

import httpx
import pytest

from completion_orchestrator.contracts import Content, Empty, OutboundRequest, Reasoning
from completion_orchestrator.errors import (
    AttemptTimeoutError,
    AuthError,
    QuotaError,
    RateLimitError,
    TransportError,
)
from completion_orchestrator.transport import OpenRouterTransport, classify_upstream_error, payload_from_completion

KEY = "sk-or-v1-" + "a" * 40


def _transport(handler, api_key=KEY):
    return OpenRouterTransport(
        api_key,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url="https://example.test/api/v1",
        referer="https://app.test",
        title="Autocomplete",
    )


def _outbound(**kwargs):
    base = dict(
        model="some/model",
        messages=[{"role": "user", "content": "hi"}],
        temperature=0.7,
        max_tokens=100,
    )
    base.update(kwargs)
    return OutboundRequest(**base)


def _sse(*events):
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    return ("".join(lines) + "data: [DONE]\n\n").encode("utf-8")


@pytest.mark.asyncio
async def test_send_posts_payload_and_returns_content():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api/v1/chat/completions"
        assert request.headers["authorization"] == f"Bearer {KEY}"
        assert request.headers["http-referer"] == "https://app.test"
        assert request.headers["x-title"] == "Autocomplete"
        body = json.loads(request.content.decode("utf-8"))
        assert body["model"] == "some/model"
        assert body["max_tokens"] == 100
        assert body["reasoning"] == {"exclude": True}
        return httpx.Response(200, json={"choices": [{"message": {"content": '["a b c"]'}}]})

    t = _transport(handler)
    try:
        out = await t.send(_outbound(reasoning_excluded=True))
        assert out == Content('["a b c"]')
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_send_without_key_raises_auth_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    t = _transport(handler, api_key=None)
    try:
        with pytest.raises(AuthError):
            await t.send(_outbound())
    finally:
        await t.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error_type"),
    [(401, AuthError), (403, AuthError), (402, QuotaError), (429, RateLimitError), (500, TransportError)],
)
async def test_http_status_mapping(status, error_type):
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": "nope"}})

    t = _transport(handler)
    try:
        with pytest.raises(error_type):
            await t.send(_outbound())
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"retry-after": "12"}, json={"error": {"message": "rl"}})

    t = _transport(handler)
    try:
        with pytest.raises(RateLimitError) as exc:
            await t.send(_outbound())
        assert exc.value.retry_after_seconds == 12
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_error_body_on_200_is_classified():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": {"code": 402, "message": "Insufficient credits"}})

    t = _transport(handler)
    try:
        with pytest.raises(QuotaError):
            await t.send(_outbound())
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_timeout_is_attempt_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    t = _transport(handler)
    try:
        with pytest.raises(AttemptTimeoutError):
            await t.send(_outbound())
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_connection_failure_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    t = _transport(handler)
    try:
        with pytest.raises(TransportError):
            await t.send(_outbound())
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_undecodable_body_is_transport_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    t = _transport(handler)
    try:
        with pytest.raises(TransportError):
            await t.send(_outbound())
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_streaming_accumulates_content_deltas():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content.decode("utf-8"))["stream"] is True
        body = _sse(
            {"choices": [{"delta": {"content": "1. walk "}}]},
            {"choices": [{"delta": {"content": "the dog"}, "finish_reason": "stop"}]},
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    t = _transport(handler)
    try:
        assert await t.send(_outbound(stream=True)) == Content("1. walk the dog")
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_streaming_falls_back_to_reasoning_deltas():
    def handler(_: httpx.Request) -> httpx.Response:
        body = _sse(
            {"choices": [{"delta": {"reasoning": "1. first "}}]},
            {"choices": [{"delta": {"reasoning": "idea", "content": ""}}]},
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    t = _transport(handler)
    try:
        assert await t.send(_outbound(stream=True)) == Reasoning("1. first idea")
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_streaming_with_no_text_is_empty():
    def handler(_: httpx.Request) -> httpx.Response:
        body = _sse({"choices": [{"delta": {"role": "assistant"}}]})
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    t = _transport(handler)
    try:
        assert isinstance(await t.send(_outbound(stream=True)), Empty)
    finally:
        await t.close()


@pytest.mark.asyncio
async def test_streaming_http_error_is_classified():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "bad key"}})

    t = _transport(handler)
    try:
        with pytest.raises(AuthError):
            await t.send(_outbound(stream=True))
    finally:
        await t.close()


def test_payload_shapes():
    assert payload_from_completion({"choices": [{"message": {"content": "hi"}}]}) == Content("hi")
    assert payload_from_completion({"choices": [{"text": "legacy"}]}) == Content("legacy")
    parts = {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}}]}
    assert payload_from_completion(parts) == Content("ab")
    reasoning = {"choices": [{"message": {"content": "", "reasoning": "thinking out loud"}}]}
    assert payload_from_completion(reasoning) == Reasoning("thinking out loud")
    assert payload_from_completion({"choices": []}) == Empty()
    assert payload_from_completion(None) == Empty()


def test_encrypted_reasoning_is_flagged():
    data = {
        "choices": [
            {"message": {"content": "", "reasoning_details": [{"type": "reasoning.encrypted", "data": "x"}]}}
        ]
    }
    out = payload_from_completion(data)
    assert isinstance(out, Empty)
    assert out.encrypted_reasoning is True


def test_classify_uses_message_text_when_status_is_generic():
    assert isinstance(classify_upstream_error(400, {"error": {"message": "Rate limit exceeded"}}), RateLimitError)
    assert isinstance(classify_upstream_error(400, {"error": {"message": "Unauthorized"}}), AuthError)
    assert isinstance(classify_upstream_error(503, None), TransportError)
