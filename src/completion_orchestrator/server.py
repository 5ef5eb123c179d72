from __future__ import annotations

import asyncio
import os
import time
from contextlib import asynccontextmanager

from .config import EngineConfig
from .engine import CompletionEngine
from .errors import (
    AuthError,
    ConfigurationError,
    EmptyResponseError,
    EngineError,
    OrchestrationTimeoutError,
    QuotaError,
    RateLimitError,
    SupersededError,
    TransportError,
)
from .http_security import install_middlewares
from .logging import configure_logging
from .metrics import (
    maybe_start_metrics,
    server_errors_total,
    server_request_latency_seconds,
    server_requests_total,
)
from .schemas import (
    ChatRequestBody,
    ChatResponseBody,
    CompletionRequestBody,
    CompletionResponseBody,
    ModelListResponse,
    RewriteRequestBody,
    chat_response,
    completion_response,
    error_response,
)
from .single_flight import SingleFlight

_STATUS_BY_ERROR: tuple[tuple[type[EngineError], int], ...] = (
    (AuthError, 401),
    (QuotaError, 402),
    (SupersededError, 409),
    (RateLimitError, 429),
    (TransportError, 502),
    (EmptyResponseError, 503),
    (ConfigurationError, 400),
    (OrchestrationTimeoutError, 504),
)


def status_for(exc: EngineError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def create_app(cfg: EngineConfig | None = None, engine: CompletionEngine | None = None):
    try:
        from fastapi import FastAPI
        from fastapi.responses import JSONResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or EngineConfig()
    configure_logging(
        level=cfg.log_level,
        fmt=cfg.log_format,
        secrets=[s for s in (cfg.openrouter_api_key, cfg.server_auth_token) if s],
    )
    engine = engine or CompletionEngine(cfg)
    flights = SingleFlight()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await engine.close()

    app = FastAPI(
        title="completion-orchestrator",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(EngineError)
    async def _engine_error_handler(request, exc: EngineError):
        status = status_for(exc)
        server_errors_total.labels(type=exc.code).inc()
        _observe(request.url.path, status, getattr(request.state, "started_at", time.monotonic()))
        headers = {}
        if isinstance(exc, RateLimitError) and exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(exc.retry_after_seconds)
        return JSONResponse(
            status_code=status,
            content=error_response(exc, request_id=getattr(request.state, "request_id", None)),
            headers=headers,
        )

    async def _bounded(coro):
        timeout = max(0.0, float(cfg.orchestration_timeout_seconds or 0)) or None
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OrchestrationTimeoutError("Request timed out.") from e

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/models", response_model=ModelListResponse)
    async def list_models():
        return {"data": await engine.resolver.list_models()}

    @app.post("/v1/completions", response_model=CompletionResponseBody)
    async def completions(req: CompletionRequestBody):
        started_at = time.monotonic()
        result = await flights.run(
            req.context_id,
            lambda: _bounded(
                engine.run_completion(
                    req.text,
                    mode=req.mode,
                    style_text=req.style_text,
                    model_id=req.model,
                    temperature=req.temperature,
                )
            ),
        )
        _observe("/v1/completions", 200, started_at)
        return completion_response(result)

    @app.post("/v1/rewrites", response_model=CompletionResponseBody)
    async def rewrites(req: RewriteRequestBody):
        started_at = time.monotonic()
        result = await flights.run(
            req.context_id,
            lambda: _bounded(
                engine.run_rewrite(
                    req.text,
                    style_text=req.style_text,
                    model_id=req.model,
                    temperature=req.temperature,
                )
            ),
        )
        _observe("/v1/rewrites", 200, started_at)
        return completion_response(result)

    @app.post("/v1/chat", response_model=ChatResponseBody)
    async def chat(req: ChatRequestBody):
        started_at = time.monotonic()
        result = await _bounded(
            engine.run_chat(
                req.message,
                style_text=req.style_text,
                model_id=req.model,
                temperature=req.temperature,
                max_tokens=req.max_tokens,
            )
        )
        _observe("/v1/chat", 200, started_at)
        return chat_response(result)

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
