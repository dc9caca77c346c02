# stickershop/utils/rate_monitor.py
import logging
import time
from collections import deque
from typing import Callable, Deque

class CallRateMonitor:
    """Remembers recent vendor call times and warns when a minute gets busy.

    Warning only; calls are never delayed or refused.
    """

    def __init__(self, name: str, warn_per_minute: int = 60, capacity: int = 1000,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.warn_per_minute = warn_per_minute
        self.calls: Deque[float] = deque(maxlen=capacity)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def record(self) -> int:
        """Register a call and return the count within the last minute"""
        now = self.clock()
        self.calls.append(now)
        recent = self.calls_last_minute(now)
        if recent > self.warn_per_minute:
            self.logger.warning(
                f"{self.name}: {recent} API calls in the last minute "
                f"(warning threshold {self.warn_per_minute})"
            )
        return recent

    def calls_last_minute(self, now: float = None) -> int:
        now = self.clock() if now is None else now
        return sum(1 for t in self.calls if now - t <= 60)
