"""Rate limiting for outbound key-set fetches.

A rolling-window log: each fetch records its timestamp and a fetch is
refused when the window already holds the maximum.  A caller that keeps
presenting tokens with unknown key ids therefore cannot force more than the
configured number of network calls per window.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import Callable

from authbridge.exceptions import RateLimitedError


class FetchRateLimiter:
    """Caps the number of fetches per rolling window.

    Args:
        max_requests: Fetches allowed per window.
        window_seconds: Window length.
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._timestamps: deque[float] = deque()

    def acquire(self) -> None:
        """Record one fetch.

        Raises:
            RateLimitedError: If the window is full.  Nothing is recorded.
        """
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._timestamps) >= self._max_requests:
                retry_after = self._timestamps[0] + self._window - now
                raise RateLimitedError(retry_after_seconds=max(math.ceil(retry_after), 1))
            self._timestamps.append(now)

    def remaining(self) -> int:
        """Fetches still allowed in the current window."""
        with self._lock:
            self._prune(self._clock())
            return max(self._max_requests - len(self._timestamps), 0)

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self._window:
            self._timestamps.popleft()
