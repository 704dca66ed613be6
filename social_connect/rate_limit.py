"""
Per-client throttle on GET /auth/{provider}: each initiation writes a pending flow, so an
unthrottled client could fill the store with state tokens until the sweeper catches up.
Keys whose window has emptied are evicted, at most once per window, so the map stays
bounded by the clients active in the last window.
"""
import math
import threading
import time
from collections import deque
from collections.abc import Callable

_WINDOW_SECONDS = 60


class SlidingWindowLimiter:
    def __init__(
        self,
        limit: int,
        window_seconds: float = _WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    def check_and_consume(self, key: str) -> tuple[bool, int | None]:
        """
        Record a hit for key unless it already has `limit` hits inside the window.
        Returns (allowed, retry_after); retry_after is whole seconds (>= 1) when refused.
        """
        if self.limit <= 0:
            return True, None
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_prune >= self.window_seconds:
                self._prune_locked(cutoff)
                self._last_prune = now
            hits = self._hits.get(key)
            if hits is None:
                hits = self._hits[key] = deque()
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit:
                return False, max(1, math.ceil(hits[0] - cutoff))
            hits.append(now)
            return True, None

    def prune(self) -> int:
        """Drop keys with no hits left in the window. Returns how many were dropped."""
        with self._lock:
            return self._prune_locked(self._clock() - self.window_seconds)

    def _prune_locked(self, cutoff: float) -> int:
        idle = [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for k in idle:
            del self._hits[k]
        return len(idle)

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
