from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable


class RequestThrottle:
    """Spacing and backoff gate for Spotify API calls.

    A leaky bucket of one: each request waits until ``min_interval`` seconds
    have passed since the previous one. After a 429 the gate also stays shut
    until the server's ``Retry-After`` has elapsed.
    """

    def __init__(
        self,
        min_interval: float = 0.1,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._sleep = sleep
        self._last_request: float | None = None
        self._backoff_until: float = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> float:
        """Block until the next request may go out. Returns seconds waited."""
        async with self._lock:
            now = self._clock()
            ready_at = self._backoff_until
            if self._last_request is not None:
                ready_at = max(ready_at, self._last_request + self.min_interval)
            delay = max(0.0, ready_at - now)
            if delay > 0:
                await self._sleep(delay)
            self._last_request = self._clock()
            return delay

    def apply_backoff(self, retry_after: float) -> None:
        """Hold every later request until ``retry_after`` seconds from now."""
        until = self._clock() + max(0.0, float(retry_after))
        self._backoff_until = max(self._backoff_until, until)

    def get_backoff_remaining(self) -> float:
        return max(0.0, self._backoff_until - self._clock())
