from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Protocol


class RateLimiter(Protocol):
    """Per-caller admission check. hit() returns False once the caller is over the limit."""

    async def hit(self, key: str) -> bool:
        ...


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """Fixed-window limiter whose windows expire on their own.

    One instance belongs to one app; deployments with several workers should
    inject a limiter backed by a shared store instead.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str) -> bool:
        async with self._lock:
            now = self._clock()
            self._expire(now)
            window = self._windows.get(key)
            if window is None:
                self._windows[key] = _Window(count=1, reset_at=now + self._window_seconds)
                return True
            if window.count >= self._limit:
                return False
            window.count += 1
            return True

    def _expire(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
