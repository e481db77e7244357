"""
Token-bucket limiter for outbound Telegram calls.

The bucket is refilled to full capacity on every tick; queued callers are
released strictly in arrival order.
"""

import asyncio
from collections import deque
from typing import Optional


class RateLimiter:
    def __init__(self, capacity: int, interval: float = 1.0, autostart: bool = True):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._interval = interval
        self._autostart = autostart
        self._tokens = capacity
        self._waiters: deque[asyncio.Future] = deque()
        self._ticker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def tokens(self) -> int:
        return self._tokens

    @property
    def pending(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        """Take one token, waiting for a refill when the bucket is empty."""
        if self._closed:
            raise RuntimeError("rate limiter is closed")
        self._ensure_ticker()
        while self._waiters and self._waiters[0].done():
            self._waiters.popleft()
        # Queued callers keep priority over newcomers even when tokens exist.
        if self._tokens > 0 and not self._waiters:
            self._tokens -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Token was handed over just before cancellation; give it back.
                self._tokens += 1
                self._release_waiters()
            raise

    def refill(self) -> None:
        self._tokens = self._capacity
        self._release_waiters()

    def _release_waiters(self) -> None:
        while self._tokens > 0 and self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._tokens -= 1
            waiter.set_result(None)

    def _ensure_ticker(self) -> None:
        if self._autostart and self._ticker is None:
            self._ticker = asyncio.get_running_loop().create_task(self._tick())

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.refill()

    async def aclose(self) -> None:
        self._closed = True
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.cancel()
