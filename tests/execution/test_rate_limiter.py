"""Tests for FixedWindowRateLimiter — quota, window roll, spacing."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from skintrader.errors import RateLimitExceededError
from skintrader.execution.rate_limiter import FixedWindowRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio()
async def test_acquire_counts_requests() -> None:
    rl = FixedWindowRateLimiter(max_requests=3, window_seconds=60, min_interval=0)
    await rl.acquire()
    assert rl.requests_remaining == 2


@pytest.mark.asyncio()
async def test_exhaustion_raises_with_retry_after() -> None:
    clock = FakeClock()
    rl = FixedWindowRateLimiter(max_requests=2, window_seconds=60, min_interval=0, clock=clock)
    await rl.acquire()
    await rl.acquire()
    clock.now += 15
    with pytest.raises(RateLimitExceededError) as exc_info:
        await rl.acquire()
    assert exc_info.value.retry_after == pytest.approx(45.0)
    assert exc_info.value.retryable


@pytest.mark.asyncio()
async def test_window_rolls_over() -> None:
    clock = FakeClock()
    rl = FixedWindowRateLimiter(max_requests=1, window_seconds=60, min_interval=0, clock=clock)
    await rl.acquire()
    clock.now += 60
    assert rl.requests_remaining == 1
    await rl.acquire()


@pytest.mark.asyncio()
async def test_min_interval_sleeps() -> None:
    rl = FixedWindowRateLimiter(max_requests=5, min_interval=0.1)
    with patch("skintrader.execution.rate_limiter.asyncio.sleep", new=AsyncMock()) as sleep:
        await rl.acquire()
    sleep.assert_awaited_once_with(0.1)


@pytest.mark.asyncio()
async def test_zero_min_interval_never_sleeps() -> None:
    rl = FixedWindowRateLimiter(max_requests=5, min_interval=0)
    with patch("skintrader.execution.rate_limiter.asyncio.sleep", new=AsyncMock()) as sleep:
        await rl.acquire()
    sleep.assert_not_awaited()
