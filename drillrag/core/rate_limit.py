"""Sliding-window rate limiter for outbound embedding requests."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Bounds request count within a trailing time window.

    Each acquire() records a timestamp. When `max_requests` timestamps are
    already inside the window, the caller sleeps until the oldest one exits.

    State is mutated only between awaits, so concurrent tasks on one event
    loop need no lock. A multi-process deployment needs a shared store.
    A `max_requests` of 0 or less disables limiting.
    """

    def __init__(
        self,
        max_requests:   int   = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_requests   = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self.total_waits = 0

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._timestamps)

    async def acquire(self) -> None:
        if self.max_requests <= 0:
            return

        while True:
            now = self._clock()
            self._prune(now)
            if len(self._timestamps) < self.max_requests:
                self._timestamps.append(now)
                return

            wait = self._timestamps[0] + self.window_seconds - now
            self.total_waits += 1
            logger.info(
                "RateLimiter | window full requests=%d waiting=%.2fs",
                len(self._timestamps), wait,
            )
            await self._sleep(max(wait, 0.0))

    def reset(self) -> None:
        self._timestamps.clear()
