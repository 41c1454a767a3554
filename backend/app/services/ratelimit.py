from __future__ import annotations

import time
from collections import defaultdict, deque


class RateLimiter:
    """In-memory sliding window rate limiter keyed per principal."""

    def __init__(self) -> None:
        self._buckets: dict[str, deque[float]] = defaultdict(deque)

    def _trim(self, key: str, now: float, window_seconds: float) -> deque[float]:
        bucket = self._buckets[key]
        while bucket and now - bucket[0] > window_seconds:
            bucket.popleft()
        return bucket

    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        now = time.monotonic()
        bucket = self._trim(key, now, window_seconds)
        if len(bucket) >= limit:
            return False
        bucket.append(now)
        return True

    def retry_after(self, key: str, window_seconds: float) -> float:
        """Seconds until the oldest request in the window expires."""

        bucket = self._buckets.get(key)
        if not bucket:
            return 0.0
        return max(0.0, window_seconds - (time.monotonic() - bucket[0]))


__all__ = ["RateLimiter"]
