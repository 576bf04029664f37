"""Composition root: builds the shared proxy components once per process."""

from dataclasses import dataclass
from typing import Optional

import httpx

from caching import DeduplicationGuard, ResponseCache
from config.settings import Settings, get_fallback_models, get_settings as _get_settings
from providers.base import BaseProvider, ProviderConfig
from providers.model_health import ModelHealthRegistry
from providers.openrouter import FallbackStreamExecutor, OpenRouterProvider
from providers.rate_limit import UpstreamRateLimiter
from .telemetry import telemetry


@dataclass
class ProxyRuntime:
    """Process-wide proxy state, shared by all concurrent requests."""

    settings: Settings
    fallback_chain: tuple[str, ...]
    health: ModelHealthRegistry
    cache: ResponseCache
    dedup: DeduplicationGuard
    limiter: UpstreamRateLimiter
    provider: BaseProvider

    def build_executor(self) -> FallbackStreamExecutor:
        """Executor over the configured chain; raises ConfigurationError if empty."""
        return FallbackStreamExecutor(
            provider=self.provider,
            health=self.health,
            limiter=self.limiter,
            fallback_chain=self.fallback_chain,
            cache=self.cache if self.settings.enable_response_caching else None,
            degraded_word_delay=self.settings.degraded_word_delay_ms / 1000,
            on_attempt=telemetry.record_attempt,
        )


# Global runtime instance (singleton)
_runtime: Optional[ProxyRuntime] = None


def get_settings() -> Settings:
    """Get application settings via dependency injection."""
    return _get_settings()


def build_runtime(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> ProxyRuntime:
    config = ProviderConfig(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        http_referer=settings.http_referer,
        app_title=settings.app_title,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        connect_timeout_sec=settings.upstream_connect_timeout_seconds,
        read_timeout_sec=settings.upstream_read_timeout_seconds,
        max_connections=settings.http_max_connections,
        max_keepalive_connections=settings.http_max_keepalive_connections,
    )
    return ProxyRuntime(
        settings=settings,
        fallback_chain=get_fallback_models(settings),
        health=ModelHealthRegistry(recovery_seconds=settings.model_recovery_seconds),
        cache=ResponseCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
        ),
        dedup=DeduplicationGuard(
            window_seconds=settings.deduplication_window_ms / 1000,
            max_entries=settings.deduplication_max_entries,
        ),
        limiter=UpstreamRateLimiter(
            max_concurrent=settings.max_concurrent_requests,
            min_interval=settings.throttle_delay_ms / 1000,
            reservoir=settings.rate_limit_burst_size,
            refresh_amount=settings.rate_limit_requests_per_minute,
            refresh_interval=settings.rate_limit_refresh_interval_seconds,
            enabled=settings.enable_request_queueing,
        ),
        provider=OpenRouterProvider(config, transport=transport),
    )


def get_runtime() -> ProxyRuntime:
    """Get or create the runtime from settings."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(get_settings())
    return _runtime


def set_runtime(runtime: Optional[ProxyRuntime]) -> None:
    """Install a prebuilt runtime (tests, embedding)."""
    global _runtime
    _runtime = runtime


async def cleanup_runtime():
    """Cleanup runtime resources."""
    global _runtime
    if _runtime:
        await _runtime.provider.aclose()
    _runtime = None
