from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .errors import AuthError

OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"
BASELINE_MODEL = "google/gemini-2.5-flash-lite"


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _csv_env(name: str, default: str) -> list[str]:
    return _parse_csv(os.getenv(name, default))


class EngineConfig(BaseModel):
    # Credentials
    openrouter_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY"))

    # Upstream
    api_base_url: str = Field(default_factory=lambda: os.getenv("OPENROUTER_API_BASE", OPENROUTER_API_BASE))
    app_referer: str = Field(default_factory=lambda: os.getenv("APP_REFERER", "https://localhost"))
    app_title: str = Field(default_factory=lambda: os.getenv("APP_TITLE", "AI Autocomplete"))
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "60"))
    )
    registry_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("REGISTRY_TIMEOUT_SECONDS", "15"))
    )

    # Models
    baseline_model: str = Field(default_factory=lambda: os.getenv("BASELINE_MODEL", BASELINE_MODEL))
    default_model: str = Field(default_factory=lambda: os.getenv("DEFAULT_MODEL", BASELINE_MODEL))
    default_temperature: float = Field(default_factory=lambda: float(os.getenv("DEFAULT_TEMPERATURE", "0.7")))

    # Capability data: maintained allow-lists, matched as substrings of the lower-cased model id
    reasoning_model_patterns: list[str] = Field(
        default_factory=lambda: _csv_env(
            "REASONING_MODEL_PATTERNS",
            "qwen,deepseek,o1,o3,gpt-5,claude-4.1,claude-3.7,thinking,reasoning,r1",
        )
    )
    streaming_reasoning_patterns: list[str] = Field(
        default_factory=lambda: _csv_env("STREAMING_REASONING_PATTERNS", "o1,o3")
    )
    exclusion_unsupported_patterns: list[str] = Field(
        default_factory=lambda: _csv_env("EXCLUSION_UNSUPPORTED_PATTERNS", "gpt-5")
    )
    reasoning_channel_ignored_patterns: list[str] = Field(
        default_factory=lambda: _csv_env("REASONING_CHANNEL_IGNORED_PATTERNS", "gemini,gpt-5")
    )
    structured_output_parameters: list[str] = Field(
        default_factory=lambda: _csv_env(
            "STRUCTURED_OUTPUT_PARAMETERS", "structured_outputs,response_format,json_schema"
        )
    )
    capability_ttl_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CAPABILITY_TTL_SECONDS", "3600"))
    )

    # Token budgets
    short_max_tokens: int = Field(default_factory=lambda: int(os.getenv("SHORT_MAX_TOKENS", "100")))
    medium_max_tokens: int = Field(default_factory=lambda: int(os.getenv("MEDIUM_MAX_TOKENS", "200")))
    long_max_tokens: int = Field(default_factory=lambda: int(os.getenv("LONG_MAX_TOKENS", "400")))
    rewrite_max_tokens: int = Field(default_factory=lambda: int(os.getenv("REWRITE_MAX_TOKENS", "300")))
    chat_max_tokens: int = Field(default_factory=lambda: int(os.getenv("CHAT_MAX_TOKENS", "500")))

    # Observability
    enable_metrics: bool = Field(
        default_factory=lambda: os.getenv("ENABLE_METRICS", "false").lower() == "true"
    )
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9110")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Server
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN"))
    enable_api_docs: bool = Field(
        default_factory=lambda: os.getenv("ENABLE_API_DOCS", "false").lower() == "true"
    )
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(256 * 1024)))
    )
    max_source_chars: int = Field(default_factory=lambda: int(os.getenv("MAX_SOURCE_CHARS", "20000")))
    orchestration_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ORCHESTRATION_TIMEOUT_SECONDS", "120"))
    )

    def require_api_key(self) -> str:
        key = (self.openrouter_api_key or "").strip()
        if not key:
            raise AuthError(
                "No API key configured.",
                hint="Add your OpenRouter API key (OPENROUTER_API_KEY).",
            )
        if len(key) < 20 or not key.startswith("sk-"):
            raise AuthError(
                "Invalid API key format.",
                hint="OpenRouter API keys start with 'sk-' and are at least 20 characters long.",
            )
        return key

    def mode_token_budget(self, mode: str) -> int:
        budgets = {
            "short": self.short_max_tokens,
            "medium": self.medium_max_tokens,
            "long": self.long_max_tokens,
            "rewrite": self.rewrite_max_tokens,
        }
        return budgets.get(mode, self.short_max_tokens)
