"""Token-bucket rate limiting for the unauthenticated OAuth endpoints.

The login form, dynamic registration and the token endpoint are all reachable
without credentials, so each is throttled per client IP. Buckets live in a
dict guarded by a lock; ``cleanup()`` drops idle ones.
"""

from __future__ import annotations

import math
import threading
import time

__all__ = ["RateLimiter", "RateLimitInfo"]


class _Bucket:
    """A single token bucket for one client."""

    __slots__ = ("tokens", "last_refill")

    def __init__(self, capacity: float, now: float):
        self.tokens: float = capacity
        self.last_refill: float = now


class RateLimitInfo:
    """Result of ``check()``."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    def headers(self) -> dict[str, str]:
        h: dict[str, str] = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            h["Retry-After"] = str(math.ceil(self.reset_after))
        return h


class RateLimiter:
    """Per-key token bucket.

    Parameters
    ----------
    rate : float
        Tokens added per second.
    capacity : int
        Maximum burst size.
    """

    def __init__(self, rate: float, capacity: int, clock=time.monotonic):
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitInfo:
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(self.capacity, now)

            elapsed = now - bucket.last_refill
            bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.rate)
            bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return RateLimitInfo(True, self.capacity, int(bucket.tokens), 0.0)

            reset_after = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 1.0
            return RateLimitInfo(False, self.capacity, 0, reset_after)

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Remove buckets idle for more than *max_age* seconds."""
        now = self._clock()
        with self._lock:
            stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
            for k in stale:
                del self._buckets[k]
        return len(stale)
