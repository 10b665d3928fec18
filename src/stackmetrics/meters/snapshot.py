"""Immutable meter snapshots handed to the exporter on every step.

Each meter kind has its own frozen snapshot class; together they form the
closed set of values the time-series builder knows how to encode. Time
domain values (timers, time gauges, long task timers) are held in seconds
and converted to the export base unit (milliseconds) at encoding time.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

# Export base time unit is milliseconds.
BASE_TIME_UNIT = "ms"


def to_base_unit(seconds: float) -> float:
    """Convert a duration in seconds to the export base unit."""
    return seconds * 1000.0


class MeterType(str, Enum):
    """Kinds of meters a registry can hold."""

    GAUGE = "gauge"
    TIME_GAUGE = "time_gauge"
    COUNTER = "counter"
    FUNCTION_COUNTER = "function_counter"
    TIMER = "timer"
    DISTRIBUTION_SUMMARY = "distribution_summary"
    LONG_TASK_TIMER = "long_task_timer"
    FUNCTION_TIMER = "function_timer"
    OTHER = "other"


class Statistic(str, Enum):
    """Semantic tag of a single measurement of a custom meter."""

    TOTAL = "total"
    TOTAL_TIME = "total_time"
    COUNT = "count"
    MAX = "max"
    VALUE = "value"
    UNKNOWN = "unknown"
    ACTIVE_TASKS = "active_tasks"
    DURATION = "duration"

    @property
    def tag_value(self) -> str:
        """Representation used as the metric type suffix."""
        return _STATISTIC_TAG_VALUES[self]


_STATISTIC_TAG_VALUES = {
    Statistic.TOTAL: "total",
    Statistic.TOTAL_TIME: "total",
    Statistic.COUNT: "count",
    Statistic.MAX: "max",
    Statistic.VALUE: "value",
    Statistic.UNKNOWN: "unknown",
    Statistic.ACTIVE_TASKS: "active",
    Statistic.DURATION: "duration",
}


@dataclass(frozen=True)
class MeterId:
    """Identity of a meter: name, sorted tags, description and kind."""

    name: str
    tags: tuple[tuple[str, str], ...] = ()
    description: str | None = None
    type: MeterType = MeterType.OTHER

    @classmethod
    def create(
        cls,
        name: str,
        tags: dict[str, str] | None = None,
        *,
        description: str | None = None,
        type: MeterType = MeterType.OTHER,
    ) -> "MeterId":
        """Create a meter id from a name and a tag mapping."""
        tag_tuple = tuple(sorted((tags or {}).items()))
        return cls(name=name, tags=tag_tuple, description=description, type=type)

    def tag_dict(self) -> dict[str, str]:
        return dict(self.tags)


@dataclass(frozen=True)
class CountAtBucket:
    """Cumulative count of observations at or below ``bucket``."""

    bucket: float
    count: float


@dataclass(frozen=True)
class ValueAtPercentile:
    """Observed value at a percentile expressed as a fraction (0.95)."""

    percentile: float
    value: float


@dataclass(frozen=True)
class HistogramSnapshot:
    """Point-in-time view of a histogram-bearing meter.

    Attributes:
        count: Total number of observations.
        total: Sum of all observations.
        max: Largest observation.
        percentile_values: Client-side computed percentiles.
        histogram_counts: Cumulative counts per bucket, ascending by bucket.
    """

    count: int
    total: float
    max: float
    percentile_values: tuple[ValueAtPercentile, ...] = ()
    histogram_counts: tuple[CountAtBucket, ...] = ()

    @classmethod
    def empty(cls) -> "HistogramSnapshot":
        return cls(count=0, total=0.0, max=0.0)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    def __post_init__(self) -> None:
        previous = 0.0
        for count_at_bucket in self.histogram_counts:
            if count_at_bucket.count < previous:
                raise ValueError("Cumulative bucket counts must be non-decreasing")
            previous = count_at_bucket.count
        if self.histogram_counts and previous > self.count:
            raise ValueError("Last bucket count cannot exceed the total count")


@dataclass(frozen=True)
class Measurement:
    """One sub-measurement of a custom meter."""

    statistic: Statistic
    value: float


@dataclass(frozen=True)
class GaugeSnapshot:
    id: MeterId
    value: float


@dataclass(frozen=True)
class TimeGaugeSnapshot:
    id: MeterId
    # seconds
    value: float


@dataclass(frozen=True)
class CounterSnapshot:
    id: MeterId
    count: float


@dataclass(frozen=True)
class FunctionCounterSnapshot:
    id: MeterId
    count: float


@dataclass(frozen=True)
class TimerSnapshot:
    id: MeterId
    histogram: HistogramSnapshot


@dataclass(frozen=True)
class DistributionSummarySnapshot:
    id: MeterId
    histogram: HistogramSnapshot


@dataclass(frozen=True)
class LongTaskTimerSnapshot:
    id: MeterId
    active_tasks: int
    # seconds
    duration: float


@dataclass(frozen=True)
class FunctionTimerSnapshot:
    """Pre-aggregated timer exposing only a count and a total time."""

    id: MeterId
    count: float
    # seconds
    total_time: float

    @property
    def mean(self) -> float:
        if not self.count or math.isnan(self.count):
            return 0.0
        return self.total_time / self.count


@dataclass(frozen=True)
class CustomMeterSnapshot:
    id: MeterId
    measurements: tuple[Measurement, ...] = field(default_factory=tuple)


MeterSnapshot = Union[
    GaugeSnapshot,
    TimeGaugeSnapshot,
    CounterSnapshot,
    FunctionCounterSnapshot,
    TimerSnapshot,
    DistributionSummarySnapshot,
    LongTaskTimerSnapshot,
    FunctionTimerSnapshot,
    CustomMeterSnapshot,
]
