"""Async rate limiting for outbound RPC and enrichment calls."""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """
    Spaces calls at least 1/rate_per_sec apart.

    Each caller reserves the next free slot under the lock and sleeps outside
    it, so waiting callers do not serialize on the lock. A rate <= 0 disables
    limiting.
    """

    def __init__(self, rate_per_sec: float) -> None:
        self.interval = 1.0 / rate_per_sec if rate_per_sec > 0 else 0.0
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        if self.interval <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.interval
        delay = slot - now
        if delay > 0:
            await asyncio.sleep(delay)
