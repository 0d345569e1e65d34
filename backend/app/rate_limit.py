"""Per-user token buckets for the chat endpoint."""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass

from .metrics import rate_limit_hits_total, rate_limit_requests_total
from .settings import settings


@dataclass(slots=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int


@dataclass(slots=True)
class _Bucket:
    tokens: float
    updated_at: float

    def refill(self, now: float, capacity: int, rate: float) -> None:
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(float(capacity), self.tokens + elapsed * rate)
        self.updated_at = now


class RateLimiter:
    """
    Token bucket keyed by the hashed anonymous id.

    Each key holds up to RATE_LIMIT_REQUESTS tokens that refill evenly over
    RATE_LIMIT_WINDOW_SECONDS. Limits are read from settings on every check so
    tests and operators can change them at runtime.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, _Bucket] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = 0.0

    async def check(self, key: str, now: float | None = None) -> RateLimitDecision:
        capacity = settings.RATE_LIMIT_REQUESTS
        window = settings.RATE_LIMIT_WINDOW_SECONDS
        if not settings.RATE_LIMIT_ENABLED or capacity <= 0 or window <= 0:
            return RateLimitDecision(True, max(0, capacity), 0)

        current = time.monotonic() if now is None else now
        rate = capacity / window
        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(float(capacity), current)
            else:
                bucket.refill(current, capacity, rate)
            allowed = bucket.tokens >= 1.0
            if allowed:
                bucket.tokens -= 1.0
            tokens = bucket.tokens
            self._sweep(current, window)

        if not allowed:
            rate_limit_hits_total.inc()
            rate_limit_requests_total.labels(result="throttle").inc()
            return RateLimitDecision(False, 0, max(1, math.ceil((1.0 - tokens) / rate)))
        rate_limit_requests_total.labels(result="allow").inc()
        return RateLimitDecision(True, int(tokens), 0)

    def reset(self) -> None:
        self._buckets.clear()
        self._last_sweep = 0.0

    def _sweep(self, now: float, window: int) -> None:
        # a bucket idle for a full window is back at capacity; drop it
        if now - self._last_sweep < window:
            return
        idle_before = now - window
        for key in [k for k, b in self._buckets.items() if b.updated_at < idle_before]:
            del self._buckets[key]
        self._last_sweep = now


__all__ = ["RateLimitDecision", "RateLimiter"]
