"""
Sliding-window request throttling.

Each key (feeder id, or network origin for registration) keeps the
timestamps of its recent requests. A request is allowed while fewer
than `limit` requests fall inside the trailing window. Keys with no
requests left in the window are dropped, at most once per window.
"""

import logging
import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from feederhub.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """Thread-safe in-process sliding window limiter."""

    def __init__(self, window_seconds: float, clock: Optional[Callable[[], float]] = None):
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = self._clock()
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int) -> Optional[int]:
        """
        Record a request for key.

        Returns None when allowed, otherwise the whole seconds until
        the oldest request leaves the window.
        """
        now = self._clock()
        cutoff = now - self.window_seconds

        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= limit:
                oldest = hits[0] if hits else now
                return max(1, math.ceil(oldest + self.window_seconds - now))

            hits.append(now)
            return None

    def _sweep(self, cutoff: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        if stale:
            logger.debug(f'Dropped {len(stale)} idle rate limit keys')

    def check(self, key: str, limit: int, message: str) -> None:
        """Record a request, raising RateLimitExceededError when over budget."""
        retry_after = self.hit(key, limit)
        if retry_after is not None:
            logger.warning(f'Rate limit exceeded for {key} (limit {limit}/{self.window_seconds}s)')
            raise RateLimitExceededError(message, retry_after=retry_after)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    @property
    def stats(self) -> dict:
        with self._lock:
            return {'tracked_keys': len(self._hits)}
