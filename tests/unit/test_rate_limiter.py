"""Tests for the fixed-window rate limiter."""

import pytest

from campus_assistant.rate_limiter import InMemoryRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def test_limit_per_key():
    """Test callers are counted separately and blocked at the limit."""
    limiter = InMemoryRateLimiter(2, 60, clock=FakeClock())

    assert await limiter.hit("a")
    assert await limiter.hit("a")
    assert not await limiter.hit("a")
    assert await limiter.hit("b")


async def test_window_expires():
    """Test a new window opens once the old one has passed."""
    clock = FakeClock()
    limiter = InMemoryRateLimiter(1, 60, clock=clock)

    assert await limiter.hit("a")
    assert not await limiter.hit("a")
    clock.now += 60
    assert await limiter.hit("a")


def test_rejects_non_positive_settings():
    """Test invalid limits are refused."""
    with pytest.raises(ValueError):
        InMemoryRateLimiter(0, 60)
    with pytest.raises(ValueError):
        InMemoryRateLimiter(5, 0)
