# flowaid/services/rate_limit.py
"""
Fixed-window rate limiting for donation creation.

Default backend is process-local: each worker process keeps its own counters,
so N processes admit up to N x limit per identifier. Set
RATE_LIMIT_STORAGE_URL to a Redis URL to share counters between processes.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

log = logging.getLogger(__name__)

_PRUNE_THRESHOLD = 10_000


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int  # seconds until the current window closes


class FixedWindowRateLimiter:
    def __init__(self, limit: int = 10, window_seconds: int = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        if limit < 1 or window_seconds < 1:
            raise ValueError("limit and window_seconds must be >= 1")
        self.limit = int(limit)
        self.window_seconds = int(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        # identifier -> (count, window expires at)
        self._windows: Dict[str, Tuple[int, float]] = {}

    def check(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        key = (identifier or "").strip().lower() or "unknown"

        with self._lock:
            if len(self._windows) > _PRUNE_THRESHOLD:
                self._prune(now)

            count, expires_at = self._windows.get(key, (0, 0.0))
            if now >= expires_at:
                expires_at = now + self.window_seconds
                self._windows[key] = (1, expires_at)
                return RateLimitResult(True, self.limit - 1, self.window_seconds)

            reset_in = max(1, int(math.ceil(expires_at - now)))
            if count >= self.limit:
                return RateLimitResult(False, 0, reset_in)

            count += 1
            self._windows[key] = (count, expires_at)
            return RateLimitResult(True, self.limit - count, reset_in)

    def reset(self, identifier: Optional[str] = None) -> None:
        with self._lock:
            if identifier is None:
                self._windows.clear()
            else:
                self._windows.pop(identifier.strip().lower(), None)

    def _prune(self, now: float) -> None:
        stale = [k for k, (_, exp) in self._windows.items() if exp <= now]
        for k in stale:
            del self._windows[k]


class RedisRateLimiter:
    """Same contract, counters kept in Redis (INCR + EXPIRE per window)."""

    def __init__(self, client: Any, limit: int = 10, window_seconds: int = 3600, prefix: str = "flowaid:ratelimit:donations") -> None:
        self.client = client
        self.limit = int(limit)
        self.window_seconds = int(window_seconds)
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisRateLimiter":
        from redis import Redis

        return cls(Redis.from_url(url), **kwargs)

    def check(self, identifier: str) -> RateLimitResult:
        key = f"{self.prefix}:{(identifier or '').strip().lower() or 'unknown'}"

        pipe = self.client.pipeline()
        pipe.incr(key, 1)
        pipe.ttl(key)
        count, ttl = pipe.execute()
        count = int(count)
        ttl = int(ttl)

        if count == 1 or ttl < 0:
            # first hit of the window (or a key that lost its TTL)
            self.client.expire(key, self.window_seconds)
            ttl = self.window_seconds

        reset_in = max(1, ttl)
        if count > self.limit:
            return RateLimitResult(False, 0, reset_in)
        return RateLimitResult(True, self.limit - count, reset_in)

    def reset(self, identifier: Optional[str] = None) -> None:
        if identifier is None:
            for key in self.client.scan_iter(f"{self.prefix}:*"):
                self.client.delete(key)
        else:
            self.client.delete(f"{self.prefix}:{identifier.strip().lower()}")


def build_rate_limiter(config: Any):
    limit = int(config.get("DONATION_RATE_LIMIT", 10))
    window = int(config.get("DONATION_RATE_WINDOW", 3600))
    url = (config.get("RATE_LIMIT_STORAGE_URL") or "").strip()
    if url:
        log.info("Donation rate limiter: redis backend (%s/%ss)", limit, window)
        return RedisRateLimiter.from_url(url, limit=limit, window_seconds=window)
    log.info("Donation rate limiter: in-process backend (%s/%ss)", limit, window)
    return FixedWindowRateLimiter(limit=limit, window_seconds=window)
