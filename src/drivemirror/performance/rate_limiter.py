"""Sliding window rate limiting for remote calls."""

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager

from ..utils.logging import get_logger


class AsyncRateLimiter:
    """Rate limiter for async operations."""

    def __init__(self, max_calls: int, time_window: float):
        """Initialize rate limiter.

        Args:
            max_calls: Maximum number of calls in the time window
            time_window: Time window in seconds
        """
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")

        self.max_calls = max_calls
        self.time_window = time_window
        self.calls: deque = deque()
        self._lock = asyncio.Lock()

        self.logger = get_logger(self.__class__.__name__)

    async def acquire(self):
        """Wait until a call is allowed and record it."""
        async with self._lock:
            while True:
                now = time.monotonic()

                while self.calls and now - self.calls[0] >= self.time_window:
                    self.calls.popleft()

                if len(self.calls) < self.max_calls:
                    self.calls.append(now)
                    return

                wait_time = self.time_window - (now - self.calls[0])
                self.logger.debug("Rate limit reached, waiting", wait_seconds=round(wait_time, 2))
                await asyncio.sleep(wait_time)

    @asynccontextmanager
    async def limit(self):
        """Context manager for rate limiting."""
        await self.acquire()
        yield
