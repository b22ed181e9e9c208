"""Per-connector request pacing.

Every connector instance owns its limiter; there is no shared global state.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Limiter(Protocol):
    async def acquire(self) -> None:
        ...


class MinIntervalLimiter:
    """Fixed minimum spacing between requests (API sources)."""

    def __init__(self, min_interval: float, sleep: Sleep = asyncio.sleep):
        """
        Args:
            min_interval: Minimum seconds between consecutive requests
            sleep: Sleep coroutine (injectable for tests)
        """
        self.min_interval = min_interval
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    async def acquire(self) -> None:
        async with self._lock:
            elapsed = time.monotonic() - self._last_request
            wait_needed = max(0.0, self.min_interval - elapsed)
            if wait_needed > 0:
                await self._sleep(wait_needed)
            self._last_request = time.monotonic()


class PoliteDelay:
    """Randomized delay before every request (scraped sources)."""

    def __init__(self, min_delay: float = 1.0, max_delay: float = 3.0, sleep: Sleep = asyncio.sleep):
        self.min_delay = min_delay
        self.max_delay = max_delay
        self._sleep = sleep

    async def acquire(self) -> None:
        delay = random.uniform(self.min_delay, self.max_delay)
        logger.debug("Polite delay %.2fs", delay)
        await self._sleep(delay)


class NoDelay:
    """Limiter that never waits."""

    async def acquire(self) -> None:
        return None
