"""Per-source request pacing.

Upstream sites are polite-crawled: consecutive requests to the same
source are spaced by at least that source's minimum interval.
"""

import asyncio
import time
from typing import Awaitable, Callable

from ..config import Settings, get_settings


class RateLimiter:
    """Enforces a minimum interval between calls to ``wait``.

    The first call returns immediately. Concurrent callers are
    serialized so the interval holds across tasks.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: float | None = None
        self._lock = asyncio.Lock()

    async def wait(self) -> float:
        """Block until the next request may go out.

        Returns:
            Seconds slept
        """
        async with self._lock:
            slept = 0.0
            if self._last_call is not None:
                remaining = self.min_interval - (self._clock() - self._last_call)
                if remaining > 0:
                    await self._sleep(remaining)
                    slept = remaining
            self._last_call = self._clock()
            return slept


class RateLimiterRegistry:
    """One limiter per source key, built lazily from settings."""

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep
        self._limiters: dict[str, RateLimiter] = {}

    def get(self, source_id: str) -> RateLimiter:
        limiter = self._limiters.get(source_id)
        if limiter is None:
            limiter = RateLimiter(
                self._settings.feed_delay(source_id), clock=self._clock, sleep=self._sleep
            )
            self._limiters[source_id] = limiter
        return limiter

    async def wait(self, source_id: str) -> float:
        return await self.get(source_id).wait()
