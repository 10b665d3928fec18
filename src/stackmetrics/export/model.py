"""Wire model for the Cloud Monitoring v3 time series API.

These types mirror the backend's resources closely enough that ``to_dict``
produces the JSON accepted by the REST endpoints. Records are built fresh
for every publish cycle and never reused.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class MetricKind(str, Enum):
    """How a point relates to time."""

    GAUGE = "GAUGE"
    DELTA = "DELTA"
    CUMULATIVE = "CUMULATIVE"

    @property
    def requires_start_time(self) -> bool:
        return self in (MetricKind.DELTA, MetricKind.CUMULATIVE)


class ValueType(str, Enum):
    """Type of the value carried by a point."""

    DOUBLE = "DOUBLE"
    INT64 = "INT64"
    DISTRIBUTION = "DISTRIBUTION"


def format_timestamp(epoch_millis: int) -> str:
    """Render epoch milliseconds as an RFC 3339 UTC timestamp."""
    seconds, millis = divmod(epoch_millis, 1000)
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return f"{moment.strftime('%Y-%m-%dT%H:%M:%S')}.{millis:03d}Z"


@dataclass(frozen=True)
class BatchWindow:
    """Time window covered by one publish cycle, in epoch milliseconds.

    The start is one millisecond after the previous window's end so that
    consecutive cumulative points never overlap.
    """

    start_time: int
    end_time: int

    @classmethod
    def following(cls, previous_end_time: int, wall_time: int) -> "BatchWindow":
        return cls(start_time=previous_end_time + 1, end_time=wall_time)


@dataclass(frozen=True)
class MetricDescriptor:
    """Schema registered with the backend for one metric type."""

    type: str
    metric_kind: MetricKind
    value_type: ValueType
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "metricKind": self.metric_kind.value,
            "valueType": self.value_type.value,
        }


@dataclass(frozen=True)
class Distribution:
    """Explicit-bucket distribution value.

    ``bucket_counts`` always holds exactly one more entry than ``bounds``;
    the final count is the overflow bucket above the last bound.
    """

    count: int
    mean: float
    bounds: tuple[float, ...]
    bucket_counts: tuple[int, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": str(self.count),
            "mean": self.mean,
            "bucketOptions": {"explicitBuckets": {"bounds": list(self.bounds)}},
            "bucketCounts": [str(c) for c in self.bucket_counts],
        }


@dataclass(frozen=True)
class TypedValue:
    """A point value; exactly one field is set."""

    double_value: float | None = None
    int64_value: int | None = None
    distribution_value: Distribution | None = None

    @classmethod
    def of_double(cls, value: float) -> "TypedValue":
        return cls(double_value=float(value))

    @classmethod
    def of_int64(cls, value: int) -> "TypedValue":
        return cls(int64_value=int(value))

    @classmethod
    def of_distribution(cls, value: Distribution) -> "TypedValue":
        return cls(distribution_value=value)

    def to_dict(self) -> dict[str, Any]:
        if self.distribution_value is not None:
            return {"distributionValue": self.distribution_value.to_dict()}
        if self.int64_value is not None:
            return {"int64Value": str(self.int64_value)}
        return {"doubleValue": self.double_value}


@dataclass(frozen=True)
class TimeInterval:
    end_time: int
    start_time: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {"endTime": format_timestamp(self.end_time)}
        if self.start_time is not None:
            data["startTime"] = format_timestamp(self.start_time)
        return data


@dataclass(frozen=True)
class Point:
    interval: TimeInterval
    value: TypedValue

    def to_dict(self) -> dict[str, Any]:
        return {"interval": self.interval.to_dict(), "value": self.value.to_dict()}


@dataclass(frozen=True)
class MonitoredResource:
    type: str
    labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "labels": dict(self.labels)}


@dataclass(frozen=True)
class TimeSeriesRecord:
    """One metric type + labels + kind + value type + data point."""

    metric_type: str
    labels: dict[str, str]
    resource: MonitoredResource
    metric_kind: MetricKind
    value_type: ValueType
    point: Point

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": {"type": self.metric_type, "labels": dict(self.labels)},
            "resource": self.resource.to_dict(),
            "metricKind": self.metric_kind.value,
            "valueType": self.value_type.value,
            "points": [self.point.to_dict()],
        }
