"""Process-wide rate and concurrency limiting for upstream calls."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from providers.exceptions import ClientDisconnectedError

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


class UpstreamRateLimiter:
    """
    Gate in front of every upstream call.

    Two constraints must both hold before a call is dispatched:
    - concurrency: at most ``max_concurrent`` calls in flight, extra callers
      wait in FIFO order for a free slot;
    - reservoir: a token bucket of ``reservoir`` tokens refilled by
      ``refresh_amount`` every ``refresh_interval`` seconds (capped at the
      bucket size), plus a fixed ``min_interval`` between dispatches.

    Only the upstream call waits. Token bookkeeping happens in synchronous
    steps with no await in between, so concurrent callers never see a torn
    count. A caller that passes ``is_disconnected`` is polled every
    ``disconnect_poll_interval`` seconds while it waits and leaves the queue,
    without spending a token, once it reports True.
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        min_interval: float = 1.0,
        reservoir: int = 5,
        refresh_amount: int = 30,
        refresh_interval: float = 60.0,
        enabled: bool = True,
        disconnect_poll_interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._max_concurrent = max(1, int(max_concurrent))
        self._min_interval = max(0.0, float(min_interval))
        self._capacity = max(1, int(reservoir))
        self._refresh_amount = max(0, int(refresh_amount))
        self._refresh_interval = max(0.001, float(refresh_interval))
        self._enabled = enabled
        self._poll_interval = max(0.001, float(disconnect_poll_interval))
        self._clock = clock
        self._sleep = sleep

        self._slots = asyncio.Semaphore(self._max_concurrent)
        self._tokens = self._capacity
        self._next_refill = self._clock() + self._refresh_interval
        self._last_dispatch: Optional[float] = None
        self._running = 0
        self._queued = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def running(self) -> int:
        return self._running

    @property
    def queued(self) -> int:
        return self._queued

    @property
    def tokens(self) -> int:
        """Tokens available now; reading it leaves the bucket untouched."""
        tokens, _ = self._projected(self._clock())
        return tokens

    def _projected(self, now: float) -> tuple[int, float]:
        if now < self._next_refill:
            return self._tokens, self._next_refill
        ticks = int((now - self._next_refill) // self._refresh_interval) + 1
        tokens = min(self._capacity, self._tokens + ticks * self._refresh_amount)
        return tokens, self._next_refill + ticks * self._refresh_interval

    def _try_take(self, now: float) -> float:
        """Consume a token and return 0, or return how long to wait."""
        self._tokens, self._next_refill = self._projected(now)
        if self._tokens < 1:
            return self._next_refill - now
        if self._last_dispatch is not None:
            spacing = self._last_dispatch + self._min_interval - now
            if spacing > 0:
                return spacing
        self._tokens -= 1
        self._last_dispatch = now
        return 0.0

    @staticmethod
    async def _check_connected(is_disconnected: Optional[DisconnectCheck]) -> None:
        if is_disconnected is not None and await is_disconnected():
            raise ClientDisconnectedError()

    async def _acquire_slot(self, is_disconnected: Optional[DisconnectCheck]) -> None:
        if is_disconnected is None:
            await self._slots.acquire()
            return
        # Keep one acquire pending across polls so the FIFO position holds.
        acquire = asyncio.ensure_future(self._slots.acquire())
        try:
            while True:
                done, _ = await asyncio.wait({acquire}, timeout=self._poll_interval)
                if done:
                    acquire.result()
                    return
                await self._check_connected(is_disconnected)
        except BaseException:
            if acquire.done() and not acquire.cancelled() and acquire.exception() is None:
                self._slots.release()
            else:
                acquire.cancel()
            raise

    async def _wait_for_dispatch(self, is_disconnected: Optional[DisconnectCheck]) -> None:
        while True:
            wait = self._try_take(self._clock())
            if wait <= 0:
                return
            logger.debug(f"Rate limiter delaying dispatch by {wait:.3f}s")
            if is_disconnected is None:
                await self._sleep(wait)
            else:
                await self._sleep(min(wait, self._poll_interval))
                await self._check_connected(is_disconnected)

    @asynccontextmanager
    async def slot(
        self, is_disconnected: Optional[DisconnectCheck] = None
    ) -> AsyncIterator[None]:
        """Hold one upstream slot for the duration of the block.

        Raises ClientDisconnectedError if the caller leaves while queued.
        """
        if self._enabled:
            self._queued += 1
            acquired = False
            try:
                await self._acquire_slot(is_disconnected)
                acquired = True
                await self._wait_for_dispatch(is_disconnected)
            except BaseException:
                # Left the queue early; hand the slot back.
                if acquired:
                    self._slots.release()
                raise
            finally:
                self._queued -= 1

        self._running += 1
        try:
            yield
        finally:
            self._running -= 1
            if self._enabled:
                self._slots.release()

    def snapshot(self) -> dict:
        return {
            "enabled": self._enabled,
            "running": self._running,
            "queued": self._queued,
            "tokens": self.tokens,
            "max_concurrent": self._max_concurrent,
            "reservoir": self._capacity,
            "refresh_amount": self._refresh_amount,
            "refresh_interval_seconds": self._refresh_interval,
            "min_interval_seconds": self._min_interval,
        }
