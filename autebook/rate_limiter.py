from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class _Bucket:
    tokens: float
    updated: float


class KeyedRateLimiter:
    """Token bucket per key (the URL host), safe to share between worker threads."""

    def __init__(self, per_second: float = 2.0, burst: int = 1, clock: Callable[[], float] = time.monotonic):
        if per_second <= 0 or burst < 1:
            raise ValueError("per_second must be positive and burst at least 1")
        self.per_second = float(per_second)
        self.burst = int(burst)
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def check_key(self, key: str) -> bool:
        """Take one token for ``key`` if available. Never blocks."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(tokens=float(self.burst), updated=now)
                self._buckets[key] = bucket
            else:
                elapsed = max(0.0, now - bucket.updated)
                bucket.tokens = min(float(self.burst), bucket.tokens + elapsed * self.per_second)
                bucket.updated = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True
            return False

    def wait_for(self, key: str, sleep: Callable[[float], None] = time.sleep) -> None:
        """Poll until ``key`` has a token, sleeping 50-80 ms between attempts."""
        while not self.check_key(key):
            sleep(0.05 + random.uniform(0, 0.03))


class BackoffState:
    """Process-wide escalation level after HTTP 429 responses."""

    def __init__(self):
        self._bounce = 0
        self._lock = threading.Lock()

    @property
    def bounce(self) -> int:
        with self._lock:
            return self._bounce

    def escalate(self, ceiling: int) -> Optional[int]:
        """Increment the level unless it already reached ``ceiling``.

        Returns the level before the increment, or None at the ceiling.
        """
        with self._lock:
            if self._bounce >= ceiling:
                return None
            previous = self._bounce
            self._bounce += 1
            return previous

    def reset(self) -> None:
        with self._lock:
            self._bounce = 0
