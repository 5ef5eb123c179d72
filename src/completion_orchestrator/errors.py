from __future__ import annotations


class EngineError(Exception):
    """Base error for orchestration failures."""

    code = "engine_error"
    default_hint = "Unexpected failure. Try again."

    def __init__(self, message: str | None = None, *, hint: str | None = None):
        super().__init__(message or self.default_hint)
        self.hint = hint or self.default_hint


class ConfigurationError(EngineError):
    code = "invalid_request"
    default_hint = "Check the request parameters."


class AuthError(EngineError):
    code = "unauthorized"
    default_hint = "Fix your credential: check the OpenRouter API key in settings."


class QuotaError(EngineError):
    code = "insufficient_credits"
    default_hint = "Add credits to your OpenRouter account."


class RateLimitError(EngineError):
    code = "rate_limited"
    default_hint = "Rate limit exceeded. Wait a moment and try again later."

    def __init__(
        self,
        retry_after_seconds: int | None = None,
        message: str = "Rate limited",
        *,
        hint: str | None = None,
    ):
        super().__init__(message, hint=hint)
        self.retry_after_seconds = retry_after_seconds


class TransportError(EngineError):
    """Network or HTTP failure mid-attempt; indicates connectivity, not content."""

    code = "transport_error"
    default_hint = "Network error. Check your connection and try again."


class EmptyResponseError(EngineError):
    """Every fallback stage ran and none produced usable text."""

    code = "empty_response"
    default_hint = "This model is currently unreliable. Try a different model."

    def __init__(self, model: str, attempts: int, message: str | None = None, *, hint: str | None = None):
        super().__init__(message or f"Model {model!r} returned no usable content after {attempts} attempts.", hint=hint)
        self.model = model
        self.attempts = attempts


class AttemptTimeoutError(EngineError):
    """A single attempt exceeded its deadline. Consumed by the controller, never surfaced."""

    code = "attempt_timeout"
    default_hint = "Request timed out."


class SupersededError(EngineError):
    """A newer request from the same triggering context replaced this one."""

    code = "superseded"
    default_hint = "A newer request from the same context replaced this one."


class OrchestrationTimeoutError(EngineError):
    """The whole call exceeded the hosting surface's deadline."""

    code = "timeout"
    default_hint = "The request took too long. Try again later."
