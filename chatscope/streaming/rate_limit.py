"""Per-client fixed-window rate limiting.

Limiter state is an explicit object so each application (and each test)
owns an independent counter map. Counting is delegated to the ``limits``
library's in-memory fixed window. Counts expire lazily on access once
their window has elapsed, and ``MemoryStorage`` also sweeps expired keys on
a background timer. Increments happen under a lock.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    # Seconds until the window resets; only set when rejected.
    retry_after: int | None = None


class RateLimiter:
    """``max_requests`` per ``window_ms`` for each key.

    Windows are tracked with one-second resolution, so ``window_ms`` below
    1000 behaves like a one-second window.
    """

    def __init__(self, max_requests: int, window_ms: int, *, storage: Storage | None = None) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._item = RateLimitItemPerSecond(max_requests, max(1, math.ceil(window_ms / 1000)))
        self._limiter = FixedWindowRateLimiter(storage or MemoryStorage())

    def check(self, key: str) -> RateLimitResult:
        if self._limiter.hit(self._item, key):
            return RateLimitResult(allowed=True)
        stats = self._limiter.get_window_stats(self._item, key)
        return RateLimitResult(allowed=False, retry_after=max(1, math.ceil(stats.reset_time - time.time())))

    __call__ = check


def rate_limit(max_requests: int, window_ms: int) -> RateLimiter:
    """Return a fresh limiter; call it with a client key to count a request."""
    return RateLimiter(max_requests, window_ms)
