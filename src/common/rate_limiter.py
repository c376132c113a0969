"""
In-memory token-bucket rate limiting for the OAuth endpoints.

Tiers, keyed by client IP:
  - token:         token, introspection and revocation endpoints
  - registration:  admin client registration

Buckets live in process memory; a multi-worker deployment limits per worker.
"""

import math
import time

from src.core.config import settings

# Stale buckets are swept once a limiter tracks more keys than this
MAX_TRACKED_KEYS = 10_000


class _Bucket:
    __slots__ = ("tokens", "last_refill")

    def __init__(self, capacity: float, now: float):
        self.tokens: float = capacity
        self.last_refill: float = now


class RateLimitInfo:
    """Outcome of one check, with the values for the response headers."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(max(1, math.ceil(self.reset_after)))
        return headers


class RateLimiter:
    """
    Token bucket per key.

    Args:
        rate: tokens added per second
        capacity: bucket size, i.e. the allowed burst
    """

    def __init__(self, rate: float, capacity: int):
        self.rate = rate
        self.capacity = capacity
        self._buckets: dict[str, _Bucket] = {}

    def check(self, key: str) -> RateLimitInfo:
        now = time.monotonic()

        if key not in self._buckets and len(self._buckets) >= MAX_TRACKED_KEYS:
            self.cleanup()

        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _Bucket(self.capacity, now)

        elapsed = now - bucket.last_refill
        bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.rate)
        bucket.last_refill = now

        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            reset_after = (self.capacity - bucket.tokens) / self.rate if self.rate > 0 else 0
            return RateLimitInfo(True, self.capacity, int(bucket.tokens), reset_after)

        reset_after = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 1.0
        return RateLimitInfo(False, self.capacity, 0, reset_after)

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Forget keys idle for more than max_age seconds."""
        now = time.monotonic()
        stale = [key for key, bucket in self._buckets.items() if now - bucket.last_refill > max_age]
        for key in stale:
            del self._buckets[key]
        return len(stale)

    def reset(self):
        self._buckets.clear()


def per_minute(limit: int) -> RateLimiter:
    return RateLimiter(rate=limit / 60.0, capacity=limit)


def per_hour(limit: int) -> RateLimiter:
    return RateLimiter(rate=limit / 3600.0, capacity=limit)


TOKEN = "token"
REGISTRATION = "registration"

limiters: dict[str, RateLimiter] = {
    TOKEN: per_minute(settings.TOKEN_RATE_LIMIT_PER_MINUTE),
    REGISTRATION: per_hour(settings.REGISTRATION_RATE_LIMIT_PER_HOUR),
}
