"""Per-model health tracking for the fallback chain."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_RECOVERY_SECONDS = 5 * 60


class ModelState(Enum):
    WORKING = "working"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass
class ModelStatus:
    state: ModelState = ModelState.UNKNOWN
    last_success_time: Optional[float] = None
    last_failure_time: Optional[float] = None
    consecutive_failures: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = data.pop("state").value
        return data


class ModelHealthRegistry:
    """Tracks working/failed status per model with timed recovery.

    Each method is a plain synchronous read-modify-write, so under the event
    loop no request can observe a half-updated record.
    """

    def __init__(
        self,
        recovery_seconds: float = DEFAULT_RECOVERY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._recovery_seconds = max(0.0, float(recovery_seconds))
        self._clock = clock
        self._statuses: Dict[str, ModelStatus] = {}

    @property
    def recovery_seconds(self) -> float:
        return self._recovery_seconds

    def get(self, model: str) -> Optional[ModelStatus]:
        return self._statuses.get(model)

    def mark_working(self, model: str) -> None:
        previous = self._statuses.get(model)
        self._statuses[model] = ModelStatus(
            state=ModelState.WORKING,
            last_success_time=self._clock(),
            last_failure_time=previous.last_failure_time if previous else None,
            consecutive_failures=0,
        )
        if previous is None or previous.state != ModelState.WORKING:
            logger.info(f"Marked model as working: {model}")

    def mark_failed(self, model: str) -> None:
        status = self._statuses.setdefault(model, ModelStatus())
        status.state = ModelState.FAILED
        status.last_failure_time = self._clock()
        status.consecutive_failures += 1
        logger.warning(
            f"Marked model as failed: {model} (failures: {status.consecutive_failures})"
        )

    def _is_eligible(self, model: str, now: float) -> bool:
        status = self._statuses.get(model)
        if status is None or status.state != ModelState.FAILED:
            return True
        failed_at = status.last_failure_time or 0.0
        if now - failed_at > self._recovery_seconds:
            # Recovery window elapsed; forget the failure.
            del self._statuses[model]
            logger.info(f"Model recovered after cooldown: {model}")
            return True
        return False

    def select_best_model(self, chain: Iterable[str]) -> str:
        """Return the first eligible model, or the primary when none is."""
        models = list(chain)
        if not models:
            raise ValueError("fallback chain cannot be empty")
        now = self._clock()
        for model in models:
            if self._is_eligible(model, now):
                return model
        return models[0]

    def snapshot(self, chain: Iterable[str]) -> dict[str, dict]:
        """Status for every chain model; untracked ones report as unknown."""
        result: dict[str, dict] = {}
        for model in chain:
            status = self._statuses.get(model)
            result[model] = status.to_dict() if status else ModelStatus().to_dict()
        return result
