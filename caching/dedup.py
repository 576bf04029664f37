"""Short-window suppression of repeated (caller, prompt) submissions."""

from __future__ import annotations

import logging
import time
from typing import Callable

from .fingerprint import fingerprint
from .ttl_map import TTLMap

logger = logging.getLogger(__name__)


def build_dedup_key(caller_id: str, prompt: str) -> str:
    return f"{caller_id}:{fingerprint(prompt)}"


class DeduplicationGuard:
    def __init__(
        self,
        window_seconds: float = 5.0,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._seen: TTLMap[str, bool] = TTLMap(
            ttl_seconds=window_seconds, max_keys=max_entries, clock=clock
        )

    def check_and_mark(self, caller_id: str, prompt: str) -> bool:
        """Return False for a duplicate; otherwise record the submission.

        Check and mark run back to back without awaiting, so two concurrent
        identical requests can never both pass.
        """
        key = build_dedup_key(caller_id, prompt)
        if key in self._seen:
            logger.info(f"Duplicate prompt detected for caller {caller_id}, rejecting")
            return False
        self._seen.set(key, True)
        return True

    def clear(self) -> None:
        self._seen.clear()

    def stats(self) -> dict:
        return {"keys": len(self._seen)}
