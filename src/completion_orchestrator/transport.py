from __future__ import annotations

import json
from typing import Any

import httpx
import structlog

from .config import OPENROUTER_API_BASE
from .contracts import Content, Empty, OutboundRequest, RawPayload, Reasoning
from .errors import AttemptTimeoutError, AuthError, EngineError, QuotaError, RateLimitError, TransportError
from .streaming import accumulate_stream

log = structlog.get_logger()


def _error_details(body: Any) -> tuple[int | None, str]:
    if not isinstance(body, dict):
        return None, ""
    error = body.get("error")
    if not isinstance(error, dict):
        return None, ""
    code = error.get("code")
    try:
        code_int = int(code) if code is not None else None
    except (TypeError, ValueError):
        code_int = None
    message = error.get("message")
    return code_int, message if isinstance(message, str) else ""


def classify_upstream_error(
    status_code: int,
    body: Any = None,
    *,
    retry_after: str | None = None,
) -> EngineError:
    """Map an upstream failure onto the error taxonomy. Body codes refine ambiguous statuses."""
    code, message = _error_details(body)
    lowered = message.lower()
    detail = f": {message}" if message else ""

    if status_code in (401, 403) or code in (401, 403) or "unauthorized" in lowered:
        return AuthError(f"Upstream rejected credentials{detail}")
    if status_code == 402 or code == 402 or "insufficient" in lowered:
        return QuotaError(f"Insufficient credits{detail}")
    if status_code == 429 or code == 429 or "rate limit" in lowered:
        retry_seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
        return RateLimitError(retry_after_seconds=retry_seconds, message=f"Rate limited{detail}")
    return TransportError(f"Upstream error {code or status_code}{detail}")


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        # Content-part arrays: [{"type": "text", "text": "..."}]
        parts = [p.get("text") for p in value if isinstance(p, dict)]
        return "".join(p for p in parts if isinstance(p, str))
    return ""


def payload_from_completion(data: Any) -> RawPayload:
    """Collapse a non-streamed chat completion body into a tagged payload."""
    if not isinstance(data, dict):
        return Empty()
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return Empty()
    choice = choices[0]
    message = choice.get("message") if isinstance(choice.get("message"), dict) else {}

    for candidate in (message.get("content"), choice.get("text"), message.get("completion"), message.get("text")):
        text = _as_text(candidate)
        if text.strip():
            return Content(text)

    for candidate in (message.get("reasoning"), message.get("reasoning_content"), choice.get("reasoning")):
        text = _as_text(candidate)
        if text.strip():
            return Reasoning(text)

    details = message.get("reasoning_details")
    encrypted = isinstance(details, list) and any(
        isinstance(d, dict) and d.get("type") == "reasoning.encrypted" for d in details
    )
    return Empty(encrypted_reasoning=encrypted)


class OpenRouterTransport:
    """Chat-completion transport for the OpenRouter API. One call per attempt, no internal retries."""

    def __init__(
        self,
        api_key: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = OPENROUTER_API_BASE,
        timeout_seconds: float = 60,
        referer: str | None = None,
        title: str | None = None,
    ):
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")
        self._referer = referer
        self._title = title

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise AuthError("No API key configured.")
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self._referer:
            headers["HTTP-Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title
        return headers

    async def send(self, outbound: OutboundRequest) -> RawPayload:
        headers = self._headers()
        url = f"{self._base_url}/chat/completions"
        payload = outbound.to_payload()
        if outbound.stream:
            return await self._send_streaming(url, headers, payload)

        try:
            resp = await self._client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise AttemptTimeoutError("Upstream request timed out.") from e
        except httpx.HTTPError as e:
            raise TransportError("Upstream request failed.") from e

        if resp.status_code >= 400:
            log.warning("upstream_http_error", model=outbound.model, status_code=resp.status_code, body=resp.text[:500])
            raise classify_upstream_error(
                resp.status_code, _safe_json(resp.text), retry_after=resp.headers.get("retry-after")
            )

        data = _safe_json(resp.text)
        if data is None:
            raise TransportError("Upstream returned an undecodable body.")
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            raise classify_upstream_error(resp.status_code, data)

        result = payload_from_completion(data)
        if isinstance(result, Empty) and result.encrypted_reasoning:
            log.info("upstream_encrypted_reasoning", model=outbound.model)
        log.debug("upstream_completion_ok", model=outbound.model, payload=result.tag)
        return result

    async def _send_streaming(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> RawPayload:
        model = payload.get("model")
        try:
            async with self._client.stream("POST", url, headers=headers, json=payload) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    log.warning("upstream_http_error", model=model, status_code=resp.status_code, body=body[:500])
                    raise classify_upstream_error(
                        resp.status_code, _safe_json(body), retry_after=resp.headers.get("retry-after")
                    )
                acc = await accumulate_stream(resp.aiter_lines())
        except httpx.TimeoutException as e:
            raise AttemptTimeoutError("Upstream stream timed out.") from e
        except httpx.HTTPError as e:
            raise TransportError("Upstream stream failed.") from e

        if acc.error is not None:
            raise classify_upstream_error(502, {"error": acc.error})

        result = acc.result()
        log.debug(
            "upstream_stream_accumulated",
            model=model,
            chunks=acc.chunks,
            finish_reason=acc.finish_reason,
            payload=result.tag,
        )
        return result


def _safe_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None
