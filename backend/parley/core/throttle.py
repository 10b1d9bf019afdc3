"""
Rate limiting for UI-visible content flushes during streaming.

The decision is a pure function of the last flush time, the current time and
the minimum interval, so it can be tested without a running stream.
"""

import time
from typing import Callable


def should_flush(last_flush: float, now: float, min_interval: float) -> bool:
    """Return True when at least ``min_interval`` seconds passed since the last flush."""
    return now - last_flush >= min_interval


class FlushThrottle:
    """
    Tracks the last flush time for one streaming run.

    The clock starts at construction, so deltas arriving within the first
    interval are coalesced into a later (or the final) flush.
    """

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self.last_flush = clock()

    def ready(self) -> bool:
        """Check the interval and, if it has elapsed, record a flush now."""
        now = self._clock()
        if should_flush(self.last_flush, now, self.min_interval):
            self.last_flush = now
            return True
        return False

