"""Time-bounded cache of streamed answers keyed by model and recent context."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence

from .fingerprint import fingerprint
from .ttl_map import TTLMap

logger = logging.getLogger(__name__)

CONTEXT_MESSAGES = 3


def build_cache_key(model: str, messages: Sequence[Mapping[str, str]]) -> str:
    """Key over the model and the last few messages of the conversation."""
    recent = [dict(message) for message in messages[-CONTEXT_MESSAGES:]]
    return f"{model}:{fingerprint(recent)}"


@dataclass(frozen=True)
class CacheEntry:
    text: str
    complete: bool = False
    writer: Optional[PendingResponse] = None


class PendingResponse:
    """One upstream attempt's claim on a cache slot.

    The first attempt to write a fragment for a key owns it until it
    completes or discards. Any other attempt streaming the same key at the
    same time writes nothing, so entries never interleave two answers.
    Until ``complete()`` the entry is pending and reads as a miss.
    """

    def __init__(self, cache: ResponseCache, key: str):
        self._cache = cache
        self._key = key
        self._text = ""
        self._owns: Optional[bool] = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def owns_entry(self) -> bool:
        return bool(self._owns)

    def _still_owner(self) -> bool:
        entry = self._cache._entries.peek(self._key)
        return entry is None or entry.writer is self

    def append(self, fragment: str) -> None:
        if not fragment or self._owns is False:
            return
        if self._owns is None:
            self._owns = self._cache._entries.peek(self._key) is None
            if not self._owns:
                logger.debug(f"Cache key {self._key} already being written, not caching")
                return
        elif not self._still_owner():
            self._owns = False
            return
        self._text += fragment
        self._cache._entries.set(self._key, CacheEntry(self._text, writer=self))

    def complete(self) -> None:
        if not self._owns or not self._text or not self._still_owner():
            return
        self._cache._entries.set(self._key, CacheEntry(self._text, complete=True))
        self._owns = False

    def discard(self) -> None:
        if self._owns and self._still_owner():
            self._cache._entries.discard(self._key)
        self._owns = False


class ResponseCache:
    """Accumulates streamed text per (model, recent context) for exact replay."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: TTLMap[str, CacheEntry] = TTLMap(
            ttl_seconds=ttl_seconds, max_keys=max_entries, clock=clock
        )
        self.hits = 0
        self.misses = 0

    def get(self, model: str, messages: Sequence[Mapping[str, str]]) -> Optional[str]:
        """Text of a completed answer; pending entries count as a miss."""
        key = build_cache_key(model, messages)
        entry = self._entries.peek(key)
        if entry is None or not entry.complete or not entry.text:
            self.misses += 1
            return None
        self._entries.touch(key)
        self.hits += 1
        return entry.text

    def writer(
        self, model: str, messages: Sequence[Mapping[str, str]]
    ) -> PendingResponse:
        return PendingResponse(self, build_cache_key(model, messages))

    def store(
        self, model: str, messages: Sequence[Mapping[str, str]], text: str
    ) -> None:
        """Record a finished answer in one step."""
        if text:
            self._entries.set(build_cache_key(model, messages), CacheEntry(text, complete=True))

    def discard(self, model: str, messages: Sequence[Mapping[str, str]]) -> None:
        self._entries.discard(build_cache_key(model, messages))

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        keys = len(self._entries)
        return {"keys": keys, "hits": self.hits, "misses": self.misses}
