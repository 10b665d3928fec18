"""Minimal in-process step meter registry.

The exporter only needs something that hands it a list of snapshots once
per step. This module provides a small thread-safe registry that does so,
covering every meter kind the exporter can encode.

Step semantics:
    Counters, function counters, timers, distribution summaries and
    function timers report what happened since the previous snapshot.
    Taking a snapshot rolls them over. Gauges and long task timers are
    read live.

Example:
    >>> registry = MeterRegistry()
    >>> requests = registry.counter("http.requests", {"method": "GET"})
    >>> requests.increment()
    >>> latency = registry.timer(
    ...     "http.latency",
    ...     slo_boundaries=(0.05, 0.1, 0.5),
    ...     percentiles=(0.5, 0.95),
    ... )
    >>> with latency.time():
    ...     handle_request()
    >>> snapshots = registry.snapshot()
"""

from __future__ import annotations

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from bisect import bisect_left
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator

from stackmetrics.meters.snapshot import (
    CounterSnapshot,
    CountAtBucket,
    CustomMeterSnapshot,
    DistributionSummarySnapshot,
    FunctionCounterSnapshot,
    FunctionTimerSnapshot,
    GaugeSnapshot,
    HistogramSnapshot,
    LongTaskTimerSnapshot,
    Measurement,
    MeterId,
    MeterSnapshot,
    MeterType,
    TimeGaugeSnapshot,
    TimerSnapshot,
    ValueAtPercentile,
)

logger = logging.getLogger(__name__)


def _safe_call(fn: Callable[[], float], meter_id: MeterId) -> float:
    try:
        return float(fn())
    except Exception as e:
        logger.debug(f"Failed to read value for meter {meter_id.name}: {e}")
        return math.nan


# =============================================================================
# Meter Base Class
# =============================================================================


class Meter(ABC):
    """Abstract base class for meters."""

    meter_type: MeterType = MeterType.OTHER

    def __init__(self, meter_id: MeterId) -> None:
        self._id = meter_id
        self._lock = threading.Lock()

    @property
    def id(self) -> MeterId:
        return self._id

    @abstractmethod
    def snapshot(self) -> MeterSnapshot:
        """Take a snapshot, rolling over step state where applicable."""
        pass


# =============================================================================
# Counters and Gauges
# =============================================================================


class Counter(Meter):
    """Monotonically increasing counter reporting per-step increments."""

    meter_type = MeterType.COUNTER

    def __init__(self, meter_id: MeterId) -> None:
        super().__init__(meter_id)
        self._value = 0.0

    def increment(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("Counter can only be incremented")
        with self._lock:
            self._value += amount

    def count(self) -> float:
        with self._lock:
            return self._value

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            value, self._value = self._value, 0.0
        return CounterSnapshot(self._id, value)


class FunctionCounter(Meter):
    """Counter backed by a function returning a monotonic total."""

    meter_type = MeterType.FUNCTION_COUNTER

    def __init__(self, meter_id: MeterId, fn: Callable[[], float]) -> None:
        super().__init__(meter_id)
        self._fn = fn
        self._last = 0.0

    def snapshot(self) -> FunctionCounterSnapshot:
        current = _safe_call(self._fn, self._id)
        with self._lock:
            if math.isnan(current):
                delta = math.nan
            else:
                delta = max(0.0, current - self._last)
                self._last = current
        return FunctionCounterSnapshot(self._id, delta)


class Gauge(Meter):
    """Point-in-time value, either set explicitly or read from a function."""

    meter_type = MeterType.GAUGE

    def __init__(self, meter_id: MeterId, fn: Callable[[], float] | None = None) -> None:
        super().__init__(meter_id)
        self._fn = fn
        self._value = 0.0

    def set(self, value: float) -> None:
        with self._lock:
            self._value = value

    def inc(self, value: float = 1.0) -> None:
        with self._lock:
            self._value += value

    def dec(self, value: float = 1.0) -> None:
        with self._lock:
            self._value -= value

    def value(self) -> float:
        if self._fn is not None:
            return _safe_call(self._fn, self._id)
        with self._lock:
            return self._value

    def snapshot(self) -> GaugeSnapshot:
        return GaugeSnapshot(self._id, self.value())


class TimeGauge(Gauge):
    """Gauge whose value is a duration in seconds."""

    meter_type = MeterType.TIME_GAUGE

    def snapshot(self) -> TimeGaugeSnapshot:  # type: ignore[override]
        return TimeGaugeSnapshot(self._id, self.value())


# =============================================================================
# Histogram-bearing Meters
# =============================================================================


class _StepHistogram:
    """Bucket counts, totals and samples for one step.

    Buckets are service level objective boundaries; a value lands in the
    first bucket whose bound is >= the value. Percentiles come from a
    bounded sample window, as a simplification of a streaming estimator.
    """

    def __init__(
        self,
        slo_boundaries: Iterable[float] = (),
        percentiles: Iterable[float] = (),
        max_samples: int = 1000,
    ) -> None:
        self._buckets = tuple(sorted(b for b in slo_boundaries if not math.isinf(b)))
        self._percentiles = tuple(percentiles)
        for p in self._percentiles:
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"Percentile must be between 0 and 1, got {p}")
        self._max_samples = max_samples
        self._reset()

    def _reset(self) -> None:
        self._bucket_counts = [0] * len(self._buckets)
        self._count = 0
        self._total = 0.0
        self._max = 0.0
        self._samples: list[float] = []

    def record(self, value: float) -> None:
        index = bisect_left(self._buckets, value)
        if index < len(self._bucket_counts):
            self._bucket_counts[index] += 1
        self._count += 1
        self._total += value
        self._max = max(self._max, value)
        if self._percentiles:
            if len(self._samples) >= self._max_samples:
                self._samples.pop(0)
            self._samples.append(value)

    def take(self) -> HistogramSnapshot:
        cumulative = []
        running = 0
        for bound, bucket_count in zip(self._buckets, self._bucket_counts):
            running += bucket_count
            cumulative.append(CountAtBucket(bound, running))

        values = []
        if self._samples:
            ordered = sorted(self._samples)
            n = len(ordered)
            for p in self._percentiles:
                values.append(ValueAtPercentile(p, ordered[int(p * (n - 1))]))
        else:
            values = [ValueAtPercentile(p, 0.0) for p in self._percentiles]

        snapshot = HistogramSnapshot(
            count=self._count,
            total=self._total,
            max=self._max,
            percentile_values=tuple(values),
            histogram_counts=tuple(cumulative),
        )
        self._reset()
        return snapshot


class Timer(Meter):
    """Records durations in seconds."""

    meter_type = MeterType.TIMER

    def __init__(
        self,
        meter_id: MeterId,
        *,
        slo_boundaries: Iterable[float] = (),
        percentiles: Iterable[float] = (),
        max_samples: int = 1000,
    ) -> None:
        super().__init__(meter_id)
        self._histogram = _StepHistogram(slo_boundaries, percentiles, max_samples)

    def record(self, seconds: float) -> None:
        if seconds < 0:
            return
        with self._lock:
            self._histogram.record(seconds)

    @contextmanager
    def time(self) -> Iterator[None]:
        """Context manager to measure duration."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(time.perf_counter() - start)

    def snapshot(self) -> TimerSnapshot:
        with self._lock:
            return TimerSnapshot(self._id, self._histogram.take())


class DistributionSummary(Meter):
    """Records arbitrary non-negative amounts such as payload sizes."""

    meter_type = MeterType.DISTRIBUTION_SUMMARY

    def __init__(
        self,
        meter_id: MeterId,
        *,
        slo_boundaries: Iterable[float] = (),
        percentiles: Iterable[float] = (),
        max_samples: int = 1000,
    ) -> None:
        super().__init__(meter_id)
        self._histogram = _StepHistogram(slo_boundaries, percentiles, max_samples)

    def record(self, amount: float) -> None:
        if amount < 0:
            return
        with self._lock:
            self._histogram.record(amount)

    def snapshot(self) -> DistributionSummarySnapshot:
        with self._lock:
            return DistributionSummarySnapshot(self._id, self._histogram.take())


class LongTaskTimer(Meter):
    """Tracks tasks that are still running.

    Example:
        >>> task = registry.long_task_timer("batch.import").start()
        >>> try:
        ...     run_import()
        ... finally:
        ...     task.stop()
    """

    meter_type = MeterType.LONG_TASK_TIMER

    class Sample:
        def __init__(self, timer: "LongTaskTimer", task_id: int) -> None:
            self._timer = timer
            self._task_id = task_id

        def stop(self) -> float:
            """Stop the task and return its duration in seconds."""
            return self._timer._stop(self._task_id)

    def __init__(
        self,
        meter_id: MeterId,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(meter_id)
        self._monotonic = monotonic
        self._tasks: dict[int, float] = {}
        self._next_id = 0

    def start(self) -> "LongTaskTimer.Sample":
        with self._lock:
            task_id = self._next_id
            self._next_id += 1
            self._tasks[task_id] = self._monotonic()
        return LongTaskTimer.Sample(self, task_id)

    def _stop(self, task_id: int) -> float:
        with self._lock:
            started = self._tasks.pop(task_id, None)
        if started is None:
            return 0.0
        return self._monotonic() - started

    def active_tasks(self) -> int:
        with self._lock:
            return len(self._tasks)

    def duration(self) -> float:
        now = self._monotonic()
        with self._lock:
            return sum(now - started for started in self._tasks.values())

    def snapshot(self) -> LongTaskTimerSnapshot:
        return LongTaskTimerSnapshot(self._id, self.active_tasks(), self.duration())


class FunctionTimer(Meter):
    """Timer backed by functions returning a total count and total seconds."""

    meter_type = MeterType.FUNCTION_TIMER

    def __init__(
        self,
        meter_id: MeterId,
        count_fn: Callable[[], float],
        total_time_fn: Callable[[], float],
    ) -> None:
        super().__init__(meter_id)
        self._count_fn = count_fn
        self._total_time_fn = total_time_fn
        self._last_count = 0.0
        self._last_total = 0.0

    def snapshot(self) -> FunctionTimerSnapshot:
        count = _safe_call(self._count_fn, self._id)
        total = _safe_call(self._total_time_fn, self._id)
        with self._lock:
            if math.isnan(count) or math.isnan(total):
                return FunctionTimerSnapshot(self._id, 0.0, 0.0)
            delta_count = max(0.0, count - self._last_count)
            delta_total = max(0.0, total - self._last_total)
            self._last_count = count
            self._last_total = total
        return FunctionTimerSnapshot(self._id, delta_count, delta_total)


class CustomMeter(Meter):
    """Meter exposing an arbitrary set of measurements."""

    meter_type = MeterType.OTHER

    def __init__(
        self,
        meter_id: MeterId,
        measure: Callable[[], Iterable[Measurement]],
    ) -> None:
        super().__init__(meter_id)
        self._measure = measure

    def snapshot(self) -> CustomMeterSnapshot:
        try:
            measurements = tuple(self._measure())
        except Exception as e:
            logger.debug(f"Failed to measure custom meter {self._id.name}: {e}")
            measurements = ()
        return CustomMeterSnapshot(self._id, measurements)


# =============================================================================
# Meter Registry
# =============================================================================


class MeterRegistry:
    """Central registry for meters.

    Meters are unique per (name, tags). Asking for an existing meter of the
    same kind returns it; a different kind raises ``ValueError``.
    """

    def __init__(self) -> None:
        self._meters: dict[tuple[str, tuple[tuple[str, str], ...]], Meter] = {}
        self._lock = threading.Lock()

    def _register(
        self,
        name: str,
        tags: dict[str, str] | None,
        description: str | None,
        meter_type: MeterType,
        factory: Callable[[MeterId], Meter],
    ) -> Any:
        meter_id = MeterId.create(name, tags, description=description, type=meter_type)
        key = (meter_id.name, meter_id.tags)
        with self._lock:
            existing = self._meters.get(key)
            if existing is not None:
                if existing.meter_type != meter_type:
                    raise ValueError(
                        f"Meter '{name}' already registered "
                        f"as {existing.meter_type.value}"
                    )
                return existing
            meter = factory(meter_id)
            self._meters[key] = meter
            return meter

    def counter(
        self,
        name: str,
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
    ) -> Counter:
        return self._register(name, tags, description, MeterType.COUNTER, Counter)

    def function_counter(
        self,
        name: str,
        fn: Callable[[], float],
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
    ) -> FunctionCounter:
        return self._register(
            name, tags, description, MeterType.FUNCTION_COUNTER,
            lambda meter_id: FunctionCounter(meter_id, fn),
        )

    def gauge(
        self,
        name: str,
        fn: Callable[[], float] | None = None,
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
    ) -> Gauge:
        return self._register(
            name, tags, description, MeterType.GAUGE,
            lambda meter_id: Gauge(meter_id, fn),
        )

    def time_gauge(
        self,
        name: str,
        fn: Callable[[], float] | None = None,
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
    ) -> TimeGauge:
        return self._register(
            name, tags, description, MeterType.TIME_GAUGE,
            lambda meter_id: TimeGauge(meter_id, fn),
        )

    def timer(
        self,
        name: str,
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
        slo_boundaries: Iterable[float] = (),
        percentiles: Iterable[float] = (),
    ) -> Timer:
        return self._register(
            name, tags, description, MeterType.TIMER,
            lambda meter_id: Timer(
                meter_id, slo_boundaries=slo_boundaries, percentiles=percentiles
            ),
        )

    def summary(
        self,
        name: str,
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
        slo_boundaries: Iterable[float] = (),
        percentiles: Iterable[float] = (),
    ) -> DistributionSummary:
        return self._register(
            name, tags, description, MeterType.DISTRIBUTION_SUMMARY,
            lambda meter_id: DistributionSummary(
                meter_id, slo_boundaries=slo_boundaries, percentiles=percentiles
            ),
        )

    def long_task_timer(
        self,
        name: str,
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
    ) -> LongTaskTimer:
        return self._register(
            name, tags, description, MeterType.LONG_TASK_TIMER, LongTaskTimer
        )

    def function_timer(
        self,
        name: str,
        count_fn: Callable[[], float],
        total_time_fn: Callable[[], float],
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
    ) -> FunctionTimer:
        return self._register(
            name, tags, description, MeterType.FUNCTION_TIMER,
            lambda meter_id: FunctionTimer(meter_id, count_fn, total_time_fn),
        )

    def custom(
        self,
        name: str,
        measure: Callable[[], Iterable[Measurement]],
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
    ) -> CustomMeter:
        return self._register(
            name, tags, description, MeterType.OTHER,
            lambda meter_id: CustomMeter(meter_id, measure),
        )

    @property
    def meters(self) -> list[Meter]:
        with self._lock:
            return list(self._meters.values())

    def remove(self, meter: Meter) -> bool:
        """Remove a meter. Returns False if it was not registered."""
        with self._lock:
            return self._meters.pop((meter.id.name, meter.id.tags), None) is not None

    def snapshot(self) -> list[MeterSnapshot]:
        """Snapshot every meter in registration order."""
        return [meter.snapshot() for meter in self.meters]

    def clear(self) -> None:
        with self._lock:
            self._meters.clear()
