"""Failure classification and per-request attempt bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import httpx

from providers.exceptions import UpstreamError

QUALIFYING_STATUS_CODES = {429, 502, 503}
QUALIFYING_TERMS = (
    "rate limit",
    "quota",
    "unavailable",
    "rate_limit",
    "quota_exceeded",
)


class FailureKind(Enum):
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    HTTP_ERROR = "http_error"
    TRANSPORT = "transport"
    STREAM_ERROR = "stream_error"

    @property
    def is_transport(self) -> bool:
        return self in (FailureKind.TRANSPORT, FailureKind.STREAM_ERROR)


class OrchestratorState(Enum):
    SELECT_MODEL = "select_model"
    CHECK_CACHE = "check_cache"
    EMIT_CACHED = "emit_cached"
    DISPATCH_UPSTREAM = "dispatch_upstream"
    STREAM_RELAY = "stream_relay"
    SELECT_NEXT_MODEL = "select_next_model"
    EMIT_DEGRADED = "emit_degraded"
    DONE = "done"


def is_rate_limit_or_unavailable(
    status_code: Optional[int], text: Optional[str] = None
) -> bool:
    """True for rate-limit / quota / unavailability responses."""
    if status_code in QUALIFYING_STATUS_CODES:
        return True
    if text:
        lowered = text.lower()
        return any(term in lowered for term in QUALIFYING_TERMS)
    return False


def classify_failure(exc: BaseException) -> FailureKind:
    if isinstance(exc, UpstreamError):
        if exc.upstream_status == 429:
            return FailureKind.RATE_LIMITED
        if exc.upstream_status in QUALIFYING_STATUS_CODES:
            return FailureKind.UNAVAILABLE
        if is_rate_limit_or_unavailable(None, exc.body_text or exc.message):
            return FailureKind.RATE_LIMITED
        if exc.stream_error:
            return FailureKind.STREAM_ERROR
        return FailureKind.HTTP_ERROR
    if isinstance(exc, (httpx.TransportError, httpx.StreamError)):
        return FailureKind.TRANSPORT
    return FailureKind.STREAM_ERROR


@dataclass
class AttemptRecord:
    model: str
    succeeded: bool
    kind: Optional[FailureKind] = None
    status_code: Optional[int] = None
    message: str = ""
    latency_ms: float = 0.0


@dataclass
class StreamOutcome:
    """What happened while serving one chat request."""

    source: Optional[str] = None  # "cache", "upstream" or "degraded"
    model: Optional[str] = None
    attempts: List[AttemptRecord] = field(default_factory=list)
    transitions: List[OrchestratorState] = field(default_factory=list)

    def enter(self, state: OrchestratorState) -> None:
        self.transitions.append(state)

    @property
    def failed_models(self) -> list[str]:
        return [a.model for a in self.attempts if not a.succeeded]
