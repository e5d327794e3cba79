"""Fixed-window rate limiter for marketplace API calls."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from skintrader.core.logging import get_logger
from skintrader.errors import RateLimitExceededError

logger = get_logger(__name__)


class FixedWindowRateLimiter:
    """At most ``max_requests`` per ``window_seconds`` plus a flat gap between calls.

    The limiter never waits out a full window itself: when the quota is used up
    it raises ``RateLimitExceededError`` with the seconds left in the window and
    the caller decides whether to sleep and retry.

    All public methods are async-safe via an internal asyncio.Lock.
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 60,
        min_interval: float = 0.1,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._min_interval = min_interval
        self._clock = clock
        self._window_start = clock()
        self._count = 0
        self._lock = asyncio.Lock()

    @property
    def requests_remaining(self) -> int:
        self._roll_window()
        return max(self._max_requests - self._count, 0)

    async def acquire(self) -> None:
        """Count one request against the current window.

        Raises:
            RateLimitExceededError: If the window's quota is exhausted.
        """
        async with self._lock:
            self._roll_window()
            if self._count >= self._max_requests:
                retry_after = self._window_seconds - (self._clock() - self._window_start)
                retry_after = max(retry_after, 0.0)
                logger.warning("rate_limit_hit", retry_after=round(retry_after, 2))
                raise RateLimitExceededError(retry_after)
            self._count += 1
            if self._min_interval > 0:
                await asyncio.sleep(self._min_interval)

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= self._window_seconds:
            self._window_start = now
            self._count = 0
