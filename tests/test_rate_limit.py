"""
Tests for the async RateLimiter.
"""

from __future__ import annotations

import asyncio
import time

from wallet_sentinel.utils.rate_limit import RateLimiter


def test_zero_rate_never_waits():
    """A non-positive rate disables limiting."""
    limiter = RateLimiter(0)

    async def run():
        started = time.monotonic()
        for _ in range(50):
            await limiter.acquire()
        return time.monotonic() - started

    assert asyncio.run(run()) < 0.5


def test_concurrent_callers_are_spaced():
    """Five concurrent acquires at 50/s take at least four intervals."""
    limiter = RateLimiter(50)
    assert limiter.interval == 0.02

    async def run():
        started = time.monotonic()
        await asyncio.gather(*(limiter.acquire() for _ in range(5)))
        return time.monotonic() - started

    assert asyncio.run(run()) >= 0.07
