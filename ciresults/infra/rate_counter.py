from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable


class RateCounter:
    """Counts events seen during the trailing window."""

    def __init__(self, window_sec: float = 1.0, clock: Callable[[], float] = time.monotonic) -> None:
        if window_sec <= 0:
            raise ValueError("window_sec must be > 0")
        self.window_sec = window_sec
        self._clock = clock
        self._events: deque[tuple[float, int]] = deque()
        self._in_window = 0
        self.total = 0

    def incr(self, n: int = 1) -> None:
        now = self._clock()
        if self._events and self._events[-1][0] == now:
            stamp, count = self._events.pop()
            self._events.append((stamp, count + n))
        else:
            self._events.append((now, n))
        self._in_window += n
        self.total += n
        self._evict(now)

    def rate(self) -> int:
        self._evict(self._clock())
        return self._in_window

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_sec
        while self._events and self._events[0][0] <= cutoff:
            _, count = self._events.popleft()
            self._in_window -= count
