"""Meters and the immutable snapshots the exporter consumes."""

from stackmetrics.meters.registry import (
    Counter,
    CustomMeter,
    DistributionSummary,
    FunctionCounter,
    FunctionTimer,
    Gauge,
    LongTaskTimer,
    Meter,
    MeterRegistry,
    TimeGauge,
    Timer,
)
from stackmetrics.meters.snapshot import (
    BASE_TIME_UNIT,
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
    Statistic,
    TimeGaugeSnapshot,
    TimerSnapshot,
    ValueAtPercentile,
    to_base_unit,
)

__all__ = [
    # Registry
    "Counter",
    "CustomMeter",
    "DistributionSummary",
    "FunctionCounter",
    "FunctionTimer",
    "Gauge",
    "LongTaskTimer",
    "Meter",
    "MeterRegistry",
    "TimeGauge",
    "Timer",
    # Snapshots
    "BASE_TIME_UNIT",
    "CounterSnapshot",
    "CountAtBucket",
    "CustomMeterSnapshot",
    "DistributionSummarySnapshot",
    "FunctionCounterSnapshot",
    "FunctionTimerSnapshot",
    "GaugeSnapshot",
    "HistogramSnapshot",
    "LongTaskTimerSnapshot",
    "Measurement",
    "MeterId",
    "MeterSnapshot",
    "MeterType",
    "Statistic",
    "TimeGaugeSnapshot",
    "TimerSnapshot",
    "ValueAtPercentile",
    "to_base_unit",
]
