"""Per-client fixed-window rate limiting."""

import asyncio
import math
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int | None = None


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter keyed by client (usually the IP).

    Requests over the limit are rejected immediately with a retry-after hint;
    nothing is queued.

    Args:
        max_requests: Requests allowed per window.
        window_seconds: Window length.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        *,
        max_requests: int = 50,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = asyncio.Lock()

    async def check(self, key: str) -> RateLimitDecision:
        """Count one request against ``key`` and decide whether it may proceed."""
        key = key or "default"
        now = self._clock()
        async with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self._window)
                self._prune(now)
                return RateLimitDecision(allowed=True)

            if window.count >= self._max_requests:
                retry_after = max(1, math.ceil(window.reset_at - now))
                return RateLimitDecision(allowed=False, retry_after=retry_after)

            window.count += 1
            return RateLimitDecision(allowed=True)

    def _prune(self, now: float) -> None:
        stale = [k for k, w in self._windows.items() if now > w.reset_at]
        for key in stale:
            del self._windows[key]
