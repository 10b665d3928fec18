"""Cancellable repeating task aligned to step boundaries."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from stackmetrics.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class StepScheduler:
    """Runs ``task`` on a daemon thread once per step.

    Runs are aligned to wall-clock step boundaries (just after each
    boundary), so every process with the same step publishes at the same
    moments. A run never overlaps the previous one.

    Example:
        >>> scheduler = StepScheduler(60.0, exporter.publish_safely)
        >>> scheduler.start()
        >>> scheduler.stop()
    """

    def __init__(
        self,
        step_seconds: float,
        task: Callable[[], object],
        *,
        clock: Clock | None = None,
        name: str = "stackdriver-metrics-publisher",
    ) -> None:
        if step_seconds <= 0:
            raise ValueError("step_seconds must be positive")
        self._step_millis = max(1, int(step_seconds * 1000))
        self._task = task
        self._clock = clock or SystemClock()
        self._name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def delay_until_next_step(self) -> float:
        """Seconds until just after the next step boundary."""
        now = self._clock.wall_time()
        return (self._step_millis - (now % self._step_millis) + 1) / 1000.0

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Cancel future runs; an in-flight run may finish or be abandoned."""
        with self._lock:
            self._stop_event.set()
            thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop_event.wait(self.delay_until_next_step()):
            try:
                self._task()
            except Exception:
                logger.warning("Scheduled task raised an exception", exc_info=True)
