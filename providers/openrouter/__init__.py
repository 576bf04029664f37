"""OpenRouter upstream: client, SSE codec and fallback orchestration."""

from .client import OpenRouterProvider
from .executor import FallbackStreamExecutor, next_model
from .resilience import (
    AttemptRecord,
    FailureKind,
    OrchestratorState,
    StreamOutcome,
    classify_failure,
    is_rate_limit_or_unavailable,
)

__all__ = [
    "AttemptRecord",
    "FailureKind",
    "FallbackStreamExecutor",
    "OpenRouterProvider",
    "OrchestratorState",
    "StreamOutcome",
    "classify_failure",
    "is_rate_limit_or_unavailable",
    "next_model",
]
