"""Sliding-window rate limiter owned by a single source adapter."""

import asyncio
import logging
import time
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most ``max_requests`` acquisitions per ``window_seconds``.

    Waiters are released in submission order: the internal ``asyncio.Lock``
    is FIFO-fair, and only the lock holder may sleep until a slot frees up.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        name: str = "limiter",
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is free, then claim it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    return
                wait = self._timestamps[0] + self.window_seconds - now
                logger.debug("%s: rate limit reached, waiting %.2fs", self.name, wait)
                await asyncio.sleep(wait)

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    def usage(self) -> dict:
        """Current window usage: used slots, limit, seconds until the oldest expires."""
        now = self._clock()
        self._prune(now)
        reset_in = 0.0
        if self._timestamps:
            reset_in = max(0.0, self._timestamps[0] + self.window_seconds - now)
        return {
            "used": len(self._timestamps),
            "limit": self.max_requests,
            "reset_in": reset_in,
        }

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()
