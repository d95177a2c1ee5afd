"""
Sliding-window rate limiting for the authentication endpoints.
"""

import math
import threading
import time
from collections import defaultdict
from typing import Callable, Dict, List

from ..errors import RateLimited


class SlidingWindowLimiter:
    """
    Counts events per key over a sliding window.

    ``hit`` records an event, raising once the key is over budget. For login,
    where only failed attempts count, callers ``reserve`` a slot before the
    attempt and ``release`` it if the attempt succeeds, so concurrent attempts
    are counted before any of them runs.
    """

    def __init__(
        self,
        max_events: int,
        window_seconds: float,
        message: str = "Too many requests",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_events = max_events
        self.window_seconds = window_seconds
        self.message = message
        self._clock = clock
        self._events: Dict[str, List[float]] = defaultdict(list)
        self._last_sweep = clock()
        self.lock = threading.Lock()

    def _prune(self, key: str, now: float) -> List[float]:
        window_start = now - self.window_seconds
        times = self._events[key]
        times[:] = [t for t in times if t > window_start]
        if not times:
            del self._events[key]
            return []
        return times

    def _sweep(self, now: float) -> None:
        # At most once per window: drop keys whose events have all expired
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._events):
            self._prune(key, now)

    def _retry_after(self, times: List[float], now: float) -> int:
        if not times:
            return 0
        return max(1, math.ceil(times[0] + self.window_seconds - now))

    def reserve(self, key: str) -> float:
        """
        Count an event now, raising if the key was already over budget.

        Returns:
            Timestamp of the recorded event, for ``release``

        Raises:
            RateLimited: With the number of seconds to wait
        """
        with self.lock:
            now = self._clock()
            self._sweep(now)
            times = self._prune(key, now)
            if len(times) >= self.max_events:
                raise RateLimited(self.message, retry_after=self._retry_after(times, now))
            self._events[key].append(now)
            return now

    def release(self, key: str, stamp: float) -> None:
        """Give back a slot taken by ``reserve``."""
        with self.lock:
            times = self._events.get(key)
            if times and stamp in times:
                times.remove(stamp)
                if not times:
                    del self._events[key]

    def hit(self, key: str) -> None:
        self.reserve(key)
