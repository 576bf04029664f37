"""Centralized configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

# Fixed base URL for OpenRouter
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==================== Upstream ====================
    openrouter_api_key: str = ""
    openrouter_base_url: str = OPENROUTER_BASE_URL
    http_referer: str = ""
    app_title: str = "Chat Fallback Proxy"

    # ==================== Model Selection ====================
    default_model: str = ""
    # Ordered model fallback chain. Comma-separated in env var.
    fallback_models: str = ""
    model_recovery_seconds: float = 300.0

    # ==================== Sampling (fixed per deployment) ====================
    temperature: float = 0.7
    max_tokens: int = 2000

    # ==================== Response Cache ====================
    enable_response_caching: bool = True
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 1000

    # ==================== Deduplication ====================
    enable_prompt_deduplication: bool = True
    deduplication_window_ms: int = 5000
    deduplication_max_entries: int = 500

    # ==================== Rate Limiting (process-wide) ====================
    enable_request_queueing: bool = True
    max_concurrent_requests: int = 3
    throttle_delay_ms: int = 1000
    rate_limit_burst_size: int = 5
    rate_limit_requests_per_minute: int = 30
    rate_limit_refresh_interval_seconds: float = 60.0

    # ==================== Degraded Response ====================
    degraded_word_delay_ms: int = 50

    # ==================== HTTP Connection Pooling ====================
    upstream_connect_timeout_seconds: float = 10.0
    # Idle time between upstream bytes, not a deadline for the whole attempt.
    upstream_read_timeout_seconds: float = 120.0
    http_max_connections: int = 100
    http_max_keepalive_connections: int = 20

    # ==================== Server ====================
    host: str = "0.0.0.0"
    port: int = 8080
    log_file: str = "server.log"

    @field_validator("openrouter_api_key", "default_model", "fallback_models", mode="before")
    @classmethod
    def strip_str(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_fallback_models(settings: Settings | None = None) -> tuple[str, ...]:
    """Get the configured fallback chain in escalation order.

    FALLBACK_MODELS wins over DEFAULT_MODEL; duplicates and blanks are dropped.
    """
    settings = settings or get_settings()
    raw = settings.fallback_models or settings.default_model
    models = [part.strip() for part in raw.split(",") if part.strip()]

    deduped: list[str] = []
    seen: set[str] = set()
    for model in models:
        if model not in seen:
            deduped.append(model)
            seen.add(model)
    return tuple(deduped)
