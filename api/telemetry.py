"""In-process counters behind the /metrics endpoint."""

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from providers.openrouter.resilience import AttemptRecord

WINDOW_SIZE = 5000


@dataclass
class LatencySeries:
    """Bounded window of (timestamp, latency) samples."""

    samples: Deque[tuple[float, float]] = field(
        default_factory=lambda: deque(maxlen=WINDOW_SIZE)
    )

    def add(self, latency_ms: float) -> None:
        self.samples.append((time.time(), max(0.0, latency_ms)))

    def per_minute(self) -> int:
        cutoff = time.time() - 60
        return sum(1 for stamp, _ in self.samples if stamp >= cutoff)

    def summary(self) -> dict:
        values = sorted(latency for _, latency in self.samples)
        if not values:
            return {"avg": 0.0, "p95": 0.0}
        p95 = values[int((len(values) - 1) * 0.95)]
        return {"avg": round(sum(values) / len(values), 2), "p95": round(p95, 2)}


class TelemetryStore:
    """Request, upstream-attempt and stream-outcome counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self._requests = Counter()
        self._request_routes = Counter()
        self._request_latency = LatencySeries()

        self._attempt_results = Counter()
        self._attempt_models = Counter()
        self._attempt_failures = Counter()
        self._attempt_latency = LatencySeries()

        self._stream_sources = Counter()

    def record_http(self, method: str, path: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self._requests[f"{status_code // 100}xx"] += 1
            self._request_routes[f"{method} {path}"] += 1
            self._request_latency.add(latency_ms)

    def record_upstream_attempt(
        self,
        model: str,
        status: str,
        latency_ms: float,
        failure_kind: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._attempt_results[status] += 1
            self._attempt_models[model] += 1
            if failure_kind:
                self._attempt_failures[failure_kind] += 1
            self._attempt_latency.add(latency_ms)

    def record_attempt(self, record: AttemptRecord) -> None:
        """Hook for the orchestrator's per-attempt callback."""
        self.record_upstream_attempt(
            model=record.model,
            status="success" if record.succeeded else "failed",
            latency_ms=record.latency_ms,
            failure_kind=record.kind.value if record.kind else None,
        )

    def record_stream_source(self, source: Optional[str]) -> None:
        # No source means the caller left before anything was served.
        with self._lock:
            self._stream_sources[source or "aborted"] += 1

    def snapshot(self) -> dict:
        with self._lock:
            request_latency = self._request_latency.summary()
            attempt_latency = self._attempt_latency.summary()
            return {
                "http": {
                    "total_requests": sum(self._requests.values()),
                    "requests_per_minute": self._request_latency.per_minute(),
                    "by_status": dict(self._requests),
                    "by_path": dict(self._request_routes),
                    "latency_ms_avg": request_latency["avg"],
                    "latency_ms_p95": request_latency["p95"],
                },
                "upstream_attempts": {
                    "total": sum(self._attempt_results.values()),
                    "attempts_per_minute": self._attempt_latency.per_minute(),
                    "by_status": dict(self._attempt_results),
                    "by_model": dict(self._attempt_models),
                    "failures_by_kind": dict(self._attempt_failures),
                    "latency_ms_avg": attempt_latency["avg"],
                    "latency_ms_p95": attempt_latency["p95"],
                },
                "streams": {"by_source": dict(self._stream_sources)},
            }

    def as_prometheus(self) -> str:
        data = self.snapshot()
        http = data["http"]
        attempts = data["upstream_attempts"]
        gauges = [
            ("http_requests_total", "counter", "Total HTTP requests", http["total_requests"]),
            ("http_requests_per_minute", "gauge", "HTTP requests in last 60s", http["requests_per_minute"]),
            ("http_latency_ms_avg", "gauge", "Average HTTP latency in milliseconds", http["latency_ms_avg"]),
            ("http_latency_ms_p95", "gauge", "P95 HTTP latency in milliseconds", http["latency_ms_p95"]),
            ("upstream_attempts_total", "counter", "Total upstream model attempts", attempts["total"]),
            ("upstream_attempts_per_minute", "gauge", "Upstream attempts in last 60s", attempts["attempts_per_minute"]),
            ("upstream_latency_ms_avg", "gauge", "Average upstream attempt latency in milliseconds", attempts["latency_ms_avg"]),
            ("upstream_latency_ms_p95", "gauge", "P95 upstream attempt latency in milliseconds", attempts["latency_ms_p95"]),
        ]
        lines: list[str] = []
        for name, kind, help_text, value in gauges:
            lines.append(f"# HELP chatproxy_{name} {help_text}")
            lines.append(f"# TYPE chatproxy_{name} {kind}")
            lines.append(f"chatproxy_{name} {value}")

        lines.append("# HELP chatproxy_upstream_failures_total Failed upstream attempts, by kind")
        lines.append("# TYPE chatproxy_upstream_failures_total counter")
        for kind, count in sorted(attempts["failures_by_kind"].items()):
            lines.append(f'chatproxy_upstream_failures_total{{kind="{kind}"}} {count}')

        lines.append("# HELP chatproxy_streams_total Chat streams served, by source")
        lines.append("# TYPE chatproxy_streams_total counter")
        for source, count in sorted(data["streams"]["by_source"].items()):
            lines.append(f'chatproxy_streams_total{{source="{source}"}} {count}')
        return "\n".join(lines) + "\n"


telemetry = TelemetryStore()
