"""Wall clock abstraction in epoch milliseconds."""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def wall_time(self) -> int:
        """Current wall time in epoch milliseconds."""
        ...


class SystemClock:
    """Clock backed by ``time.time``."""

    def wall_time(self) -> int:
        return time.time_ns() // 1_000_000


class MockClock:
    """Manually advanced clock for tests.

    Example:
        >>> clock = MockClock(1_000)
        >>> clock.add(seconds=60)
        >>> clock.wall_time()
        61000
    """

    def __init__(self, start_millis: int = 1) -> None:
        self._now = start_millis
        self._lock = threading.Lock()

    def wall_time(self) -> int:
        with self._lock:
            return self._now

    def add(self, millis: int = 0, *, seconds: float = 0.0) -> int:
        with self._lock:
            self._now += millis + int(seconds * 1000)
            return self._now
