"""
Per-client sliding-window rate limiting in front of the dispatcher.
"""

import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(max(1, math.ceil(self.retry_after)))
        return headers


class RateLimiter:
    """
    Sliding window limiter keyed by client id.

    Each key keeps the timestamps of its admitted requests inside the
    window; a request is refused once the window holds ``limit`` of them.
    """

    def __init__(self, limit: int, window_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.limit = max(1, limit)
        self.window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check(self, key: str) -> RateLimitResult:
        """Admit and record one request for ``key``, or refuse it."""
        now = self._clock()
        with self._lock:
            # Idle keys are dropped once per window so the map stays bounded.
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            hits = self._hits[key]
            self._expire(hits, now)

            if len(hits) >= self.limit:
                reset_at = hits[0] + self.window
                return RateLimitResult(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(0.0, reset_at - now),
                )

            hits.append(now)
            return RateLimitResult(
                allowed=True,
                limit=self.limit,
                remaining=self.limit - len(hits),
                reset_at=hits[0] + self.window,
            )

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def usage(self, key: str) -> Dict[str, float]:
        now = self._clock()
        with self._lock:
            hits = self._hits.get(key)
            if hits is not None:
                self._expire(hits, now)
            count = len(hits) if hits else 0
        return {
            "current": count,
            "limit": self.limit,
            "remaining": max(0, self.limit - count),
            "window_seconds": self.window,
        }

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def cleanup(self) -> int:
        """Drop expired timestamps and empty keys; returns timestamps removed."""
        now = self._clock()
        with self._lock:
            return self._sweep(now)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def _sweep(self, now: float) -> int:
        removed = 0
        for key in list(self._hits):
            hits = self._hits[key]
            removed += self._expire(hits, now)
            if not hits:
                del self._hits[key]
        self._last_sweep = now
        return removed

    def _expire(self, hits: Deque[float], now: float) -> int:
        cutoff = now - self.window
        removed = 0
        while hits and hits[0] <= cutoff:
            hits.popleft()
            removed += 1
        return removed
