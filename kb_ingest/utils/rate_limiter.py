import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    In-memory sliding window limiter: at most `max_requests` acquisitions in
    any `time_period_seconds` window. Callers over the limit wait for the
    oldest request to leave the window instead of being rejected.

    Args:
        max_requests: The maximum number of requests allowed within the time period.
        time_period_seconds: The time window in seconds.
    """
    def __init__(
        self,
        max_requests: int,
        time_period_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.max_requests = max_requests
        self.time_period_seconds = time_period_seconds
        self.clock = clock
        self.sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock() # To protect access to _timestamps

    async def acquire(self) -> float:
        """Waits for a free slot and takes it. Returns the seconds spent waiting."""
        waited = 0.0
        while True:
            async with self._lock:
                now = self.clock()
                # Drop requests older than the time period
                while self._timestamps and now - self._timestamps[0] >= self.time_period_seconds:
                    self._timestamps.popleft()

                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    return waited

                wait = self._timestamps[0] + self.time_period_seconds - now

            logger.debug(f"Rate limit of {self.max_requests} per {self.time_period_seconds}s reached, waiting {wait:.2f}s.")
            await self.sleep(wait)
            waited += wait
