"""Meter snapshot to time series conversion.

One builder exists per publish cycle; it carries that cycle's batch window.
Each snapshot class has its own handler, looked up in a table keyed by
class, and every handler funnels into ``_create`` which applies the
cumulative toggle, the descriptor lookup and the interval rule:

    GAUGE points carry only an end time. DELTA and CUMULATIVE points carry
    the window start as well. The backend rejects either mistake.

NaN and infinite values (a gauge whose callback failed, for instance) are
not valid JSON numbers and would fail the whole request they are sent in,
so such records are dropped here with a debug log.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Iterable

from stackmetrics.export.config import ExportConfig
from stackmetrics.export.descriptors import DescriptorCache
from stackmetrics.export.distribution import encode_distribution, point_mass_distribution
from stackmetrics.export.model import (
    BatchWindow,
    Distribution,
    MetricKind,
    MonitoredResource,
    Point,
    TimeInterval,
    TimeSeriesRecord,
    TypedValue,
    ValueType,
)
from stackmetrics.meters.snapshot import (
    CounterSnapshot,
    CustomMeterSnapshot,
    DistributionSummarySnapshot,
    FunctionCounterSnapshot,
    FunctionTimerSnapshot,
    GaugeSnapshot,
    LongTaskTimerSnapshot,
    MeterId,
    MeterSnapshot,
    TimeGaugeSnapshot,
    TimerSnapshot,
    to_base_unit,
)

logger = logging.getLogger(__name__)


class NamingConvention:
    """Maps meter names and tags to backend names. Identity by default."""

    def name(self, meter_id: MeterId) -> str:
        return meter_id.name

    def tag_key(self, key: str) -> str:
        return key

    def tag_value(self, value: str) -> str:
        return value


def whole_or_decimal(value: float) -> str:
    """Format ``95.0`` as ``95`` and ``99.9`` as ``99.9``."""
    return f"{value:.4f}".rstrip("0").rstrip(".")


class TimeSeriesBuilder:
    """Builds the time series records for one publish cycle.

    Example:
        >>> builder = TimeSeriesBuilder(config, window, descriptor_cache)
        >>> records = builder.build_all(registry.snapshot())
    """

    def __init__(
        self,
        config: ExportConfig,
        window: BatchWindow,
        descriptors: DescriptorCache | None = None,
        naming_convention: NamingConvention | None = None,
    ) -> None:
        """Initialize builder.

        Args:
            config: Export configuration.
            window: Batch window of the current cycle.
            descriptors: Descriptor cache; without one no descriptors are
                registered and the requested kind is used as-is.
            naming_convention: Name and tag mapping.
        """
        self._config = config
        self._window = window
        self._descriptors = descriptors
        self._naming = naming_convention or NamingConvention()
        self._resource = MonitoredResource(
            type=config.resource_type,
            labels={"project_id": config.project_id, **config.resource_labels},
        )
        self._handlers: dict[type, Callable[..., list[TimeSeriesRecord | None]]] = {
            GaugeSnapshot: self._gauge,
            TimeGaugeSnapshot: self._time_gauge,
            CounterSnapshot: self._counter,
            FunctionCounterSnapshot: self._function_counter,
            TimerSnapshot: self._timer,
            DistributionSummarySnapshot: self._summary,
            LongTaskTimerSnapshot: self._long_task_timer,
            FunctionTimerSnapshot: self._function_timer,
            CustomMeterSnapshot: self._custom,
        }

    @property
    def window(self) -> BatchWindow:
        return self._window

    def build(self, snapshot: MeterSnapshot) -> list[TimeSeriesRecord]:
        """Convert one snapshot into its time series records."""
        handler = self._handlers.get(type(snapshot))
        if handler is None:
            raise TypeError(f"Unsupported meter snapshot: {type(snapshot).__name__}")
        # records with values the backend cannot accept come back as None
        return [record for record in handler(snapshot) if record is not None]

    def build_all(self, snapshots: Iterable[MeterSnapshot]) -> list[TimeSeriesRecord]:
        """Convert every snapshot, skipping (and logging) any that fail."""
        records: list[TimeSeriesRecord] = []
        for snapshot in snapshots:
            try:
                records.extend(self.build(snapshot))
            except Exception as e:
                logger.warning(f"Failed to build time series for {snapshot.id.name}: {e}")
        return records

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _gauge(self, snapshot: GaugeSnapshot) -> list[TimeSeriesRecord | None]:
        return [self._double(snapshot.id, snapshot.value, None)]

    def _time_gauge(self, snapshot: TimeGaugeSnapshot) -> list[TimeSeriesRecord | None]:
        return [self._double(snapshot.id, to_base_unit(snapshot.value), None)]

    def _counter(self, snapshot: CounterSnapshot) -> list[TimeSeriesRecord | None]:
        return [self._double(snapshot.id, snapshot.count, None, MetricKind.CUMULATIVE)]

    def _function_counter(
        self, snapshot: FunctionCounterSnapshot
    ) -> list[TimeSeriesRecord | None]:
        return [self._double(snapshot.id, snapshot.count, None, MetricKind.CUMULATIVE)]

    def _long_task_timer(self, snapshot: LongTaskTimerSnapshot) -> list[TimeSeriesRecord | None]:
        return [
            self._create(
                snapshot.id,
                TypedValue.of_int64(snapshot.active_tasks),
                ValueType.INT64,
                "activeTasks",
            ),
            self._double(snapshot.id, to_base_unit(snapshot.duration), "duration"),
        ]

    def _timer(self, snapshot: TimerSnapshot) -> list[TimeSeriesRecord | None]:
        return self._histogram_series(snapshot, time_domain=True)

    def _summary(self, snapshot: DistributionSummarySnapshot) -> list[TimeSeriesRecord | None]:
        return self._histogram_series(snapshot, time_domain=False)

    def _histogram_series(
        self,
        snapshot: TimerSnapshot | DistributionSummarySnapshot,
        time_domain: bool,
    ) -> list[TimeSeriesRecord | None]:
        histogram = snapshot.histogram

        def scaled(value: float) -> float:
            return to_base_unit(value) if time_domain else value

        records = [
            self._distribution(snapshot.id, encode_distribution(histogram, time_domain)),
            self._double(snapshot.id, scaled(histogram.max), "max"),
            self._double(snapshot.id, histogram.count, "count", MetricKind.CUMULATIVE),
        ]
        for value_at_p in histogram.percentile_values:
            statistic = "p" + whole_or_decimal(value_at_p.percentile * 100)
            records.append(self._double(snapshot.id, scaled(value_at_p.value), statistic))
        return records

    def _function_timer(self, snapshot: FunctionTimerSnapshot) -> list[TimeSeriesRecord | None]:
        if not math.isfinite(snapshot.count):
            logger.debug(f"Skipping non-finite count for {self.metric_type(snapshot.id, None)}")
            return []
        distribution = point_mass_distribution(snapshot.count, to_base_unit(snapshot.mean))
        return [self._distribution(snapshot.id, distribution)]

    def _custom(self, snapshot: CustomMeterSnapshot) -> list[TimeSeriesRecord | None]:
        return [
            self._double(snapshot.id, m.value, m.statistic.tag_value)
            for m in snapshot.measurements
        ]

    # -------------------------------------------------------------------------
    # Record construction
    # -------------------------------------------------------------------------

    def metric_type(self, meter_id: MeterId, statistic: str | None) -> str:
        metric_type = f"{self._config.metric_type_prefix}{self._naming.name(meter_id)}"
        if statistic is not None:
            metric_type = f"{metric_type}/{statistic}"
        return metric_type

    def _double(
        self,
        meter_id: MeterId,
        value: float,
        statistic: str | None,
        metric_kind: MetricKind = MetricKind.GAUGE,
    ) -> TimeSeriesRecord | None:
        if not math.isfinite(value):
            logger.debug(
                f"Skipping non-finite value {value} for {self.metric_type(meter_id, statistic)}"
            )
            return None
        return self._create(
            meter_id, TypedValue.of_double(value), ValueType.DOUBLE, statistic, metric_kind
        )

    def _distribution(
        self, meter_id: MeterId, distribution: Distribution
    ) -> TimeSeriesRecord | None:
        if not math.isfinite(distribution.mean):
            logger.debug(
                f"Skipping distribution with non-finite mean for "
                f"{self.metric_type(meter_id, None)}"
            )
            return None
        return self._create(
            meter_id,
            TypedValue.of_distribution(distribution),
            ValueType.DISTRIBUTION,
            None,
        )

    def _create(
        self,
        meter_id: MeterId,
        value: TypedValue,
        value_type: ValueType,
        statistic: str | None,
        metric_kind: MetricKind = MetricKind.GAUGE,
    ) -> TimeSeriesRecord:
        if not self._config.cumulative_enabled:
            metric_kind = MetricKind.GAUGE

        metric_type = self.metric_type(meter_id, statistic)

        backend_kind = metric_kind
        if self._descriptors is not None:
            backend_kind = self._descriptors.ensure_registered(
                metric_type, value_type, meter_id.description, metric_kind
            )
        if backend_kind != metric_kind:
            logger.debug(
                f"Metric kind registered in the backend ({backend_kind.value}) does not match "
                f"the one expected for this meter ({metric_kind.value}); using the backend's. "
                f"Delete descriptor {metric_type} to have it recreated."
            )

        labels = {
            self._naming.tag_key(k): self._naming.tag_value(v) for k, v in meter_id.tags
        }
        return TimeSeriesRecord(
            metric_type=metric_type,
            labels=labels,
            resource=self._resource,
            metric_kind=backend_kind,
            value_type=value_type,
            point=Point(interval=self._interval(backend_kind), value=value),
        )

    def _interval(self, metric_kind: MetricKind) -> TimeInterval:
        if metric_kind.requires_start_time:
            return TimeInterval(
                end_time=self._window.end_time, start_time=self._window.start_time
            )
        return TimeInterval(end_time=self._window.end_time)
