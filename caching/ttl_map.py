from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class TTLMap(Generic[K, V]):
    """Insertion-ordered map with per-entry expiry and a key limit.

    Entries live at most ``ttl_seconds``; when the limit is exceeded the
    least recently set (or touched) entry is evicted first.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_keys: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = max(0.0, float(ttl_seconds))
        self._max_keys = max(1, int(max_keys))
        self._clock = clock
        self._data: OrderedDict[K, tuple[float, V]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _prune(self, now: float) -> None:
        expired = [key for key, (until, _) in self._data.items() if now >= until]
        for key in expired:
            self._data.pop(key, None)

    def get(self, key: K, default: V | None = None, *, touch: bool = False) -> V | None:
        entry = self._data.get(key)
        if entry is None:
            self.misses += 1
            return default
        until, value = entry
        if self._clock() >= until:
            self._data.pop(key, None)
            self.misses += 1
            return default
        if touch:
            self._data.move_to_end(key)
        self.hits += 1
        return value

    def peek(self, key: K, default: V | None = None) -> V | None:
        """Like get, without touching order or hit/miss counters."""
        entry = self._data.get(key)
        if entry is None or self._clock() >= entry[0]:
            return default
        return entry[1]

    def touch(self, key: K) -> None:
        """Mark a live entry as recently used without changing its expiry."""
        if key in self._data:
            self._data.move_to_end(key)

    def __contains__(self, key: object) -> bool:
        entry = self._data.get(key)  # type: ignore[arg-type]
        return entry is not None and self._clock() < entry[0]

    def set(self, key: K, value: V) -> None:
        now = self._clock()
        until = now + self._ttl
        is_new = key not in self._data
        self._data[key] = (until, value)
        self._data.move_to_end(key)
        if is_new and len(self._data) > self._max_keys:
            self._prune(now)
            while len(self._data) > self._max_keys:
                self._data.popitem(last=False)

    def discard(self, key: K) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        self._prune(self._clock())
        return len(self._data)

    def stats(self) -> dict:
        return {"keys": len(self), "hits": self.hits, "misses": self.misses}
