"""
In-memory sliding-window rate limiting per key (client IP). Guards the initiation endpoint so
a single client cannot flood the nonce store.
"""
import math
import threading
import time


class SlidingWindowLimiter:
    def __init__(self, limit: int, window_seconds: int = 60):
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, key: str) -> tuple[bool, int | None]:
        """
        Record one request for key if under the limit.
        Returns (allowed, retry_after_seconds); retry_after is >= 1 when not allowed.
        """
        if self.limit <= 0:
            return True, None
        now = time.monotonic()
        with self._lock:
            hits = self._hits.setdefault(key, [])
            cutoff = now - self.window_seconds
            hits[:] = [t for t in hits if t > cutoff]
            if len(hits) >= self.limit:
                retry_after = max(1, math.ceil(self.window_seconds - (now - hits[0])))
                return False, retry_after
            hits.append(now)
            if len(self._hits) > 10_000:
                self._prune(cutoff)
            return True, None

    def _prune(self, cutoff: float) -> None:
        for k in [k for k, v in self._hits.items() if not v or v[-1] <= cutoff]:
            del self._hits[k]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
