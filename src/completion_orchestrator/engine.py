from __future__ import annotations

import time

import structlog

from .capabilities import ModelCapabilityResolver
from .config import EngineConfig
from .contracts import (
    Attempt,
    ChatResult,
    CompletionMode,
    CompletionRequest,
    CompletionResult,
    Content,
    ModelCapability,
    OutboundRequest,
    Reasoning,
    payload_text,
)
from .errors import AttemptTimeoutError, ConfigurationError, EmptyResponseError, EngineError
from .extractor import extract_with_strategy
from .fallback import ATTEMPT_INDEX, Outcome, Stage, StagePlan, next_stage, plan_for
from .metrics import attempts_total, extraction_strategy_total, orchestration_latency_seconds, orchestrations_total
from .normalizer import COMPLETION_PLACEHOLDERS, REWRITE_PLACEHOLDERS, normalize
from .prompts import RequestComposer
from .transport import OpenRouterTransport

log = structlog.get_logger()


class CompletionEngine:
    """
    Turns source text plus user settings into a fixed-size list of candidates.

    Each call runs at most three sequential attempts (see `fallback`). Callers are
    expected to keep at most one call in flight per triggering context.
    """

    def __init__(
        self,
        cfg: EngineConfig,
        *,
        transport: OpenRouterTransport | None = None,
        resolver: ModelCapabilityResolver | None = None,
        composer: RequestComposer | None = None,
    ):
        self.cfg = cfg
        self.transport = transport or OpenRouterTransport(
            cfg.openrouter_api_key,
            base_url=cfg.api_base_url,
            timeout_seconds=cfg.upstream_timeout_seconds,
            referer=cfg.app_referer,
            title=cfg.app_title,
        )
        self.resolver = resolver or ModelCapabilityResolver(cfg)
        self.composer = composer or RequestComposer(self.resolver.policy)

    async def close(self) -> None:
        await self.transport.close()
        await self.resolver.close()

    def _temperature(self, temperature: float | None) -> float:
        value = self.cfg.default_temperature if temperature is None else float(temperature)
        if not (0.0 <= value <= 2.0):
            raise ConfigurationError("temperature must be between 0 and 2.")
        return value

    def _source(self, text: str) -> str:
        if not isinstance(text, str) or not text.strip():
            raise ConfigurationError("Source text must be a non-empty string.")
        if len(text) > self.cfg.max_source_chars:
            raise ConfigurationError("Source text too large.")
        return text

    def build_request(
        self,
        source_text: str,
        mode: CompletionMode | str,
        style_text: str | None = None,
        temperature: float | None = None,
    ) -> CompletionRequest:
        try:
            mode = CompletionMode(mode)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported completion mode: {mode!r}") from e
        return CompletionRequest(
            source_text=self._source(source_text),
            mode=mode,
            cardinality=mode.cardinality,
            temperature=self._temperature(temperature),
            token_budget=self.cfg.mode_token_budget(mode.value),
            style_text=style_text.strip() if style_text and style_text.strip() else None,
        )

    async def run_completion(
        self,
        source_text: str,
        mode: CompletionMode | str = CompletionMode.SHORT,
        style_text: str | None = None,
        model_id: str | None = None,
        temperature: float | None = None,
    ) -> CompletionResult:
        request = self.build_request(source_text, mode, style_text, temperature)
        if request.mode is CompletionMode.REWRITE:
            raise ConfigurationError("Use run_rewrite for rewrite requests.")
        return await self._orchestrate(request, model_id or self.cfg.default_model, kind="completion")

    async def run_rewrite(
        self,
        source_text: str,
        style_text: str | None = None,
        model_id: str | None = None,
        temperature: float | None = None,
    ) -> CompletionResult:
        request = self.build_request(source_text, CompletionMode.REWRITE, style_text, temperature)
        return await self._orchestrate(request, model_id or self.cfg.default_model, kind="rewrite")

    def _accepted_payloads(self, capability: ModelCapability, outbound: OutboundRequest) -> tuple[type, ...]:
        # A streamed reasoning channel is a disguised content channel; a non-streamed one usually is not.
        if outbound.stream or self.resolver.policy.reasoning_channel_is_answer(capability.model_id):
            return (Content, Reasoning)
        return (Content,)

    async def _attempt(self, stage: Stage, plan: StagePlan, request: CompletionRequest) -> tuple[list[str], Outcome]:
        capability = await self.resolver.resolve(plan.model_id)
        outbound = self.composer.compose(
            request,
            capability,
            plan.variant,
            force_reasoning_exclusion=plan.force_reasoning_exclusion,
        )
        attempt = Attempt(
            model_id=outbound.model,
            prompt_variant=outbound.variant or plan.variant,
            reasoning_excluded=outbound.reasoning_excluded,
            stream=outbound.stream,
        )
        log.info(
            "attempt_started",
            stage=stage.value,
            model=attempt.model_id,
            variant=attempt.prompt_variant.value,
            reasoning_excluded=attempt.reasoning_excluded,
            stream=attempt.stream,
            source_chars=len(request.source_text),
        )

        try:
            payload = await self.transport.send(outbound)
        except AttemptTimeoutError:
            attempts_total.labels(stage=stage.value, outcome=Outcome.TIMEOUT.value).inc()
            log.warning("attempt_timed_out", stage=stage.value, model=attempt.model_id)
            return [], Outcome.TIMEOUT

        accepted = self._accepted_payloads(capability, outbound)
        if isinstance(payload, Reasoning) and Reasoning not in accepted:
            log.info("reasoning_channel_ignored", stage=stage.value, model=attempt.model_id)

        extraction = extract_with_strategy(payload_text(payload, accepted), request.cardinality)
        if extraction.empty:
            attempts_total.labels(stage=stage.value, outcome=Outcome.EMPTY.value).inc()
            log.warning("attempt_empty", stage=stage.value, model=attempt.model_id, payload=payload.tag)
            return [], Outcome.EMPTY

        strategy = extraction.strategy or "none"
        extraction_strategy_total.labels(strategy=strategy).inc()
        attempts_total.labels(stage=stage.value, outcome=Outcome.OK.value).inc()
        log.info(
            "extraction_strategy_matched",
            stage=stage.value,
            model=attempt.model_id,
            strategy=strategy,
            items=len(extraction.items),
        )
        return extraction.items, Outcome.OK

    async def _orchestrate(self, request: CompletionRequest, model_id: str, *, kind: str) -> CompletionResult:
        started = time.monotonic()
        baseline = self.cfg.baseline_model
        try:
            self.cfg.require_api_key()
            stage = Stage.PRIMARY
            attempts = 0
            while not stage.terminal:
                plan = plan_for(stage, selected_model=model_id, baseline_model=baseline)
                attempts += 1
                items, outcome = await self._attempt(stage, plan, request)
                following = next_stage(stage, outcome, selected_model=model_id, baseline_model=baseline)
                if following is Stage.SUCCEEDED:
                    placeholders = REWRITE_PLACEHOLDERS if kind == "rewrite" else COMPLETION_PLACEHOLDERS
                    result = CompletionResult(
                        items=tuple(normalize(items, request.cardinality, placeholders=placeholders)),
                        model_used=plan.model_id,
                        used_fallback=ATTEMPT_INDEX[stage] > 1,
                    )
                    if result.used_fallback:
                        log.info("orchestration_fallback", kind=kind, stage=stage.value, model=plan.model_id)
                    orchestrations_total.labels(kind=kind, status="success").inc()
                    return result
                stage = following
            raise EmptyResponseError(model_id, attempts)
        except EngineError as e:
            orchestrations_total.labels(kind=kind, status=e.code).inc()
            log.warning("orchestration_failed", kind=kind, model=model_id, error=e.code, message=str(e))
            raise
        finally:
            orchestration_latency_seconds.labels(kind=kind).observe(max(0.0, time.monotonic() - started))

    async def run_chat(
        self,
        message: str,
        style_text: str | None = None,
        model_id: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResult:
        """Single free-form reply, retried once on the baseline model when the selected one is silent."""
        message = self._source(message)
        temp = self._temperature(temperature)
        budget = max_tokens or self.cfg.chat_max_tokens
        if budget <= 0:
            raise ConfigurationError("max_tokens must be > 0.")
        selected = model_id or self.cfg.default_model
        models = [selected]
        if selected != self.cfg.baseline_model:
            models.append(self.cfg.baseline_model)

        policy = self.resolver.policy
        started = time.monotonic()
        try:
            self.cfg.require_api_key()
            for index, model in enumerate(models):
                exclude = index > 0 or (
                    policy.is_reasoning_model(model) and policy.supports_reasoning_exclusion(model)
                )
                outbound = self.composer.compose_chat(
                    model=model,
                    message=message,
                    style_text=style_text,
                    temperature=temp,
                    max_tokens=budget,
                    exclude_reasoning=exclude,
                )
                try:
                    payload = await self.transport.send(outbound)
                except AttemptTimeoutError:
                    log.warning("chat_attempt_timed_out", model=model)
                    continue
                accepted: tuple[type, ...] = (
                    (Content, Reasoning) if policy.reasoning_channel_is_answer(model) else (Content,)
                )
                text = payload_text(payload, accepted).strip()
                if text:
                    orchestrations_total.labels(kind="chat", status="success").inc()
                    return ChatResult(text=text, model_used=model, used_fallback=index > 0)
                log.warning("chat_attempt_empty", model=model, payload=payload.tag)
            raise EmptyResponseError(selected, len(models))
        except EngineError as e:
            orchestrations_total.labels(kind="chat", status=e.code).inc()
            log.warning("orchestration_failed", kind="chat", model=selected, error=e.code, message=str(e))
            raise
        finally:
            orchestration_latency_seconds.labels(kind="chat").observe(max(0.0, time.monotonic() - started))
