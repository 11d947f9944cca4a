"""Sliding-window rate limiter shared by every routing client."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable

from ...config import settings

logger = logging.getLogger(__name__)

MINUTE_SECONDS = 60.0
DAY_SECONDS = 24 * 60 * 60.0


class RateLimiter:
    """Bounds outbound requests per trailing minute and per trailing day.

    Construct one instance and hand it to every client that talks to the same
    provider account; the window is guarded by a lock so concurrent route
    calculations see a consistent count.
    """

    def __init__(
        self,
        per_minute: int | None = None,
        per_day: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.per_minute = per_minute if per_minute is not None else settings.rate_limit_per_minute
        self.per_day = per_day if per_day is not None else settings.rate_limit_per_day
        self._clock = clock
        self._lock = threading.Lock()
        # Oldest first; the minute window is a suffix of the day window.
        self._timestamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._timestamps and self._timestamps[0] <= now - DAY_SECONDS:
            self._timestamps.popleft()

    def _minute_count(self, now: float) -> int:
        cutoff = now - MINUTE_SECONDS
        count = 0
        for timestamp in reversed(self._timestamps):
            if timestamp <= cutoff:
                break
            count += 1
        return count

    def _has_capacity(self, now: float) -> bool:
        self._prune(now)
        return self._minute_count(now) < self.per_minute and len(self._timestamps) < self.per_day

    def _wait_seconds(self, now: float) -> float:
        if self._has_capacity(now):
            return 0.0
        wait = 0.0
        minute_count = self._minute_count(now)
        if minute_count >= self.per_minute:
            # The request that must expire is the per_minute-th most recent one.
            blocking = self._timestamps[len(self._timestamps) - self.per_minute]
            wait = max(wait, blocking + MINUTE_SECONDS - now)
        if len(self._timestamps) >= self.per_day:
            blocking = self._timestamps[len(self._timestamps) - self.per_day]
            wait = max(wait, blocking + DAY_SECONDS - now)
        return max(0.0, wait)

    def can_make_request(self) -> bool:
        with self._lock:
            return self._has_capacity(self._clock())

    def record_request(self) -> None:
        with self._lock:
            self._timestamps.append(self._clock())

    def get_wait_time(self) -> float:
        """Milliseconds until the next request slot frees up, 0 if one is free now."""
        with self._lock:
            return self._wait_seconds(self._clock()) * 1000.0

    def acquire(self, sleep: Callable[[float], None] = time.sleep) -> float:
        """Block the calling thread until a slot is free, then claim it.

        Returns the number of seconds spent waiting.
        """
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                if self._has_capacity(now):
                    self._timestamps.append(now)
                    return waited
                wait = self._wait_seconds(now)
            logger.warning(f"Rate limit reached. Waiting {wait * 1000:.0f}ms before next request...")
            sleep(wait)
            waited += wait

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()
