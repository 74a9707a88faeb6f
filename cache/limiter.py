"""
cache/limiter.py -- Fixed-window request counters for rate limiting.

Thin wrapper over the `limits` package (the engine underneath slowapi):

  check(key, limit, window)      FixedWindowRateLimiter.test(): reads the
                                 current count and reports whether it is
                                 still below `limit`. It never writes.
  increment(key, limit, window)  FixedWindowRateLimiter.hit(): adds one to
                                 the count. The storage sets the window
                                 expiry only when that increment creates the
                                 counter, so the window is anchored to first
                                 use, not to the wall clock.
  ttl(key, limit, window)        seconds until the window resets, from
                                 get_window_stats(); feeds Retry-After.

Callers check, then increment, in two separate calls. Requests that arrive
between another request's check and its increment all see the old count,
so a burst can overshoot `limit` by a few. Enforcement is approximate.

Counters live in whatever storage RATE_LIMIT_STORAGE_URI names
("memory://" by default, "redis://..." for a shared deployment). Keys are
namespaced "rate_limit/"; callers pick the sub-namespace ("ip:...",
"user:...", "login:ip:...").
"""

from __future__ import annotations

import math
import time

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

NAMESPACE = "rate_limit"


def make_storage(uri: str = "memory://") -> Storage:
    return storage_from_string(uri)


class RateLimiter:
    def __init__(self, storage: Storage | None = None) -> None:
        self._storage = storage if storage is not None else MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def check(self, key: str, limit: int, window_seconds: int) -> bool:
        """Return True if key is still under limit in its current window."""
        return self._strategy.test(_item(limit, window_seconds), key)

    def increment(self, key: str, limit: int, window_seconds: int) -> None:
        """Count one hit for key, opening a new window if none is live."""
        self._strategy.hit(_item(limit, window_seconds), key)

    def ttl(self, key: str, limit: int, window_seconds: int) -> int:
        """Seconds until key's window resets (0 if no live window)."""
        stats = self._strategy.get_window_stats(_item(limit, window_seconds), key)
        return max(0, math.ceil(stats.reset_time - time.time()))

    def healthy(self) -> bool:
        return self._storage.check()


def _item(limit: int, window_seconds: int) -> RateLimitItem:
    return RateLimitItemPerSecond(limit, window_seconds, namespace=NAMESPACE)
