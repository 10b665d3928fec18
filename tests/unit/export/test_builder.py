"""Tests for meter snapshot to time series conversion."""

import pytest

from stackmetrics.export.builder import NamingConvention, TimeSeriesBuilder, whole_or_decimal
from stackmetrics.export.config import ExportConfig
from stackmetrics.export.descriptors import DescriptorCache
from stackmetrics.export.model import BatchWindow, MetricKind, ValueType
from stackmetrics.export.transport import InMemoryTransportClient
from stackmetrics.meters.snapshot import (
    CountAtBucket,
    CounterSnapshot,
    CustomMeterSnapshot,
    DistributionSummarySnapshot,
    FunctionCounterSnapshot,
    FunctionTimerSnapshot,
    GaugeSnapshot,
    HistogramSnapshot,
    LongTaskTimerSnapshot,
    Measurement,
    MeterId,
    Statistic,
    TimeGaugeSnapshot,
    TimerSnapshot,
    ValueAtPercentile,
)

PREFIX = "custom.googleapis.com/"
WINDOW = BatchWindow(start_time=1_001, end_time=61_000)


def make_builder(descriptors=None, naming_convention=None, **overrides):
    config = ExportConfig(project_id="test-project", **overrides)
    return TimeSeriesBuilder(config, WINDOW, descriptors, naming_convention)


def by_type(records):
    return {r.metric_type: r for r in records}


class TestWholeOrDecimal:
    """Tests for percentile statistic formatting."""

    @pytest.mark.parametrize(
        "value,expected",
        [(95.0, "95"), (99.9, "99.9"), (50.0, "50"), (99.99, "99.99"), (0.0, "0")],
    )
    def test_formatting(self, value, expected):
        assert whole_or_decimal(value) == expected


class TestScalarMeters:
    """Tests for gauges, counters and long task timers."""

    def setup_method(self):
        self.builder = make_builder()

    def test_gauge_has_no_start_time(self):
        meter_id = MeterId.create("queue.size", {"queue": "jobs"})

        records = self.builder.build(GaugeSnapshot(meter_id, 12.0))

        assert len(records) == 1
        record = records[0]
        assert record.metric_type == f"{PREFIX}queue.size"
        assert record.metric_kind == MetricKind.GAUGE
        assert record.value_type == ValueType.DOUBLE
        assert record.labels == {"queue": "jobs"}
        assert record.point.value.double_value == 12.0
        assert record.point.interval.end_time == 61_000
        assert record.point.interval.start_time is None

    def test_time_gauge_converted_to_milliseconds(self):
        records = self.builder.build(TimeGaugeSnapshot(MeterId.create("uptime"), 1.5))

        assert records[0].point.value.double_value == 1500.0

    def test_counter_is_cumulative_with_start_time(self):
        records = self.builder.build(CounterSnapshot(MeterId.create("jobs"), 3.0))

        record = records[0]
        assert record.metric_kind == MetricKind.CUMULATIVE
        assert record.point.interval.start_time == 1_001
        assert record.point.interval.end_time == 61_000

    def test_function_counter_is_cumulative(self):
        records = self.builder.build(FunctionCounterSnapshot(MeterId.create("gc"), 2.0))

        assert records[0].metric_kind == MetricKind.CUMULATIVE
        assert records[0].point.value.double_value == 2.0

    def test_counter_is_gauge_when_cumulative_disabled(self):
        builder = make_builder(cumulative_enabled=False)

        records = builder.build(CounterSnapshot(MeterId.create("jobs"), 3.0))

        assert records[0].metric_kind == MetricKind.GAUGE
        assert records[0].point.interval.start_time is None

    def test_long_task_timer_records(self):
        snapshot = LongTaskTimerSnapshot(MeterId.create("import"), active_tasks=2, duration=3.0)

        records = by_type(self.builder.build(snapshot))

        active = records[f"{PREFIX}import/activeTasks"]
        assert active.value_type == ValueType.INT64
        assert active.metric_kind == MetricKind.GAUGE
        assert active.point.value.int64_value == 2
        duration = records[f"{PREFIX}import/duration"]
        assert duration.value_type == ValueType.DOUBLE
        assert duration.point.value.double_value == 3000.0

    def test_resource_labels(self):
        builder = make_builder(resource_type="k8s_container", resource_labels={"zone": "a"})

        record = builder.build(GaugeSnapshot(MeterId.create("g"), 1.0))[0]

        assert record.resource.type == "k8s_container"
        assert record.resource.labels == {"project_id": "test-project", "zone": "a"}

    def test_custom_metric_type_prefix(self):
        builder = make_builder(metric_type_prefix="workload.googleapis.com/")

        record = builder.build(GaugeSnapshot(MeterId.create("g"), 1.0))[0]

        assert record.metric_type == "workload.googleapis.com/g"


class TestHistogramMeters:
    """Tests for timers, distribution summaries and function timers."""

    def setup_method(self):
        self.builder = make_builder()
        self.histogram = HistogramSnapshot(
            count=10,
            total=2.0,
            max=0.9,
            percentile_values=(
                ValueAtPercentile(0.95, 0.5),
                ValueAtPercentile(0.999, 0.8),
            ),
            histogram_counts=(
                CountAtBucket(0.1, 5),
                CountAtBucket(0.5, 8),
                CountAtBucket(1.0, 8),
            ),
        )

    def test_timer_records(self):
        snapshot = TimerSnapshot(MeterId.create("http.latency"), self.histogram)

        records = by_type(self.builder.build(snapshot))

        assert set(records) == {
            f"{PREFIX}http.latency",
            f"{PREFIX}http.latency/max",
            f"{PREFIX}http.latency/count",
            f"{PREFIX}http.latency/p95",
            f"{PREFIX}http.latency/p99.9",
        }
        distribution = records[f"{PREFIX}http.latency"]
        assert distribution.value_type == ValueType.DISTRIBUTION
        assert distribution.metric_kind == MetricKind.GAUGE
        value = distribution.point.value.distribution_value
        assert value.bounds == pytest.approx((100.0, 500.0))
        assert value.bucket_counts == (5, 3, 2)
        assert value.mean == pytest.approx(200.0)

        assert records[f"{PREFIX}http.latency/max"].point.value.double_value == pytest.approx(900.0)
        assert records[f"{PREFIX}http.latency/p95"].point.value.double_value == pytest.approx(500.0)

        count = records[f"{PREFIX}http.latency/count"]
        assert count.metric_kind == MetricKind.CUMULATIVE
        assert count.value_type == ValueType.DOUBLE
        assert count.point.value.double_value == 10.0
        assert count.point.interval.start_time == 1_001

    def test_summary_is_not_time_scaled(self):
        snapshot = DistributionSummarySnapshot(MeterId.create("payload"), self.histogram)

        records = by_type(self.builder.build(snapshot))

        value = records[f"{PREFIX}payload"].point.value.distribution_value
        assert value.bounds == (0.1, 0.5)
        assert value.mean == pytest.approx(0.2)
        assert records[f"{PREFIX}payload/max"].point.value.double_value == 0.9

    def test_function_timer_point_mass(self):
        snapshot = FunctionTimerSnapshot(MeterId.create("cache.gets"), count=4, total_time=2.0)

        records = self.builder.build(snapshot)

        assert len(records) == 1
        value = records[0].point.value.distribution_value
        assert value.count == 4
        assert value.mean == pytest.approx(500.0)
        assert value.bounds == (0.0,)
        assert value.bucket_counts == (0, 4)


class TestCustomMeters:
    """Tests for custom meters."""

    def test_one_record_per_measurement(self):
        builder = make_builder()
        snapshot = CustomMeterSnapshot(
            MeterId.create("pool"),
            (
                Measurement(Statistic.VALUE, 4.0),
                Measurement(Statistic.TOTAL_TIME, 2.0),
                Measurement(Statistic.ACTIVE_TASKS, 1.0),
            ),
        )

        records = by_type(builder.build(snapshot))

        assert set(records) == {
            f"{PREFIX}pool/value",
            f"{PREFIX}pool/total",
            f"{PREFIX}pool/active",
        }
        assert all(r.metric_kind == MetricKind.GAUGE for r in records.values())
        assert all(r.value_type == ValueType.DOUBLE for r in records.values())


class TestDescriptorInteraction:
    """Tests for the effective kind coming from the descriptor cache."""

    def test_backend_kind_wins(self, caplog):
        client = InMemoryTransportClient(existing_descriptors={f"{PREFIX}jobs": MetricKind.GAUGE})
        cache = DescriptorCache(client, "projects/test-project", PREFIX)
        builder = make_builder(descriptors=cache)

        with caplog.at_level("DEBUG", logger="stackmetrics.export.builder"):
            record = builder.build(CounterSnapshot(MeterId.create("jobs"), 1.0))[0]

        assert record.metric_kind == MetricKind.GAUGE
        assert record.point.interval.start_time is None
        assert "does not match" in caplog.text

    def test_descriptor_registered_with_toggled_kind(self):
        client = InMemoryTransportClient()
        cache = DescriptorCache(client, "projects/test-project", PREFIX)
        builder = make_builder(descriptors=cache, cumulative_enabled=False)

        builder.build(CounterSnapshot(MeterId.create("jobs", description="Jobs done"), 1.0))

        descriptor = client.descriptors[f"{PREFIX}jobs"]
        assert descriptor.metric_kind == MetricKind.GAUGE
        assert descriptor.description == "Jobs done"

    def test_registration_failure_uses_requested_kind(self):
        client = InMemoryTransportClient()
        client.fail_descriptors = True
        cache = DescriptorCache(client, "projects/test-project", PREFIX)
        builder = make_builder(descriptors=cache)

        record = builder.build(CounterSnapshot(MeterId.create("jobs"), 1.0))[0]

        assert record.metric_kind == MetricKind.CUMULATIVE
        assert record.point.interval.start_time == 1_001


class TestNamingConvention:
    """Tests for custom naming conventions."""

    def test_convention_applied_to_names_and_tags(self):
        class SnakeCase(NamingConvention):
            def name(self, meter_id):
                return meter_id.name.replace(".", "_")

            def tag_key(self, key):
                return key.replace(".", "_")

        builder = make_builder(naming_convention=SnakeCase())

        record = builder.build(GaugeSnapshot(MeterId.create("http.active", {"http.method": "GET"}), 1.0))[0]

        assert record.metric_type == f"{PREFIX}http_active"
        assert record.labels == {"http_method": "GET"}


class TestBuildAll:
    """Tests for building a whole step."""

    def test_unknown_snapshot_raises_type_error(self):
        builder = make_builder()

        with pytest.raises(TypeError):
            builder.build(object())

    def test_failing_snapshot_skipped(self):
        class Unsupported:
            id = MeterId.create("odd")

        builder = make_builder()

        records = builder.build_all(
            [GaugeSnapshot(MeterId.create("a"), 1.0), Unsupported(), CounterSnapshot(MeterId.create("b"), 1.0)]
        )

        assert [r.metric_type for r in records] == [f"{PREFIX}a", f"{PREFIX}b"]

    def test_to_dict_shape(self):
        builder = make_builder()

        data = builder.build(CounterSnapshot(MeterId.create("jobs", {"k": "v"}), 2.0))[0].to_dict()

        assert data["metric"] == {"type": f"{PREFIX}jobs", "labels": {"k": "v"}}
        assert data["resource"] == {"type": "global", "labels": {"project_id": "test-project"}}
        assert data["metricKind"] == "CUMULATIVE"
        assert data["valueType"] == "DOUBLE"
        assert data["points"] == [
            {
                "interval": {
                    "endTime": "1970-01-01T00:01:01.000Z",
                    "startTime": "1970-01-01T00:00:01.001Z",
                },
                "value": {"doubleValue": 2.0},
            }
        ]


class TestNonFiniteValues:
    """Tests for values JSON cannot represent."""

    def setup_method(self):
        self.client = InMemoryTransportClient()
        self.cache = DescriptorCache(self.client, "projects/test-project", PREFIX)
        self.builder = make_builder(descriptors=self.cache)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_gauge_skipped_without_registration(self, value):
        records = self.builder.build(GaugeSnapshot(MeterId.create("broken"), value))

        assert records == []
        assert self.client.descriptor_requests == []

    def test_counter_nan_skipped(self, caplog):
        with caplog.at_level("DEBUG", logger="stackmetrics.export.builder"):
            records = self.builder.build(FunctionCounterSnapshot(MeterId.create("gc"), float("nan")))

        assert records == []
        assert "non-finite" in caplog.text

    def test_timer_keeps_finite_records(self):
        histogram = HistogramSnapshot(
            count=2,
            total=1.0,
            max=float("nan"),
            percentile_values=(ValueAtPercentile(0.5, float("inf")),),
        )

        records = by_type(self.builder.build(TimerSnapshot(MeterId.create("latency"), histogram)))

        assert set(records) == {f"{PREFIX}latency", f"{PREFIX}latency/count"}

    def test_distribution_with_nan_mean_skipped(self):
        histogram = HistogramSnapshot(count=2, total=float("nan"), max=1.0)

        records = by_type(self.builder.build(DistributionSummarySnapshot(MeterId.create("payload"), histogram)))

        assert f"{PREFIX}payload" not in records
        assert f"{PREFIX}payload/max" in records

    @pytest.mark.parametrize(
        "count,total_time",
        [(float("nan"), 1.0), (float("inf"), 1.0), (2.0, float("inf"))],
    )
    def test_function_timer_skipped(self, count, total_time):
        snapshot = FunctionTimerSnapshot(MeterId.create("cache.gets"), count, total_time)

        assert self.builder.build(snapshot) == []

    def test_custom_measurement_skipped_individually(self):
        snapshot = CustomMeterSnapshot(
            MeterId.create("pool"),
            (Measurement(Statistic.VALUE, float("nan")), Measurement(Statistic.COUNT, 3.0)),
        )

        records = self.builder.build(snapshot)

        assert [r.metric_type for r in records] == [f"{PREFIX}pool/count"]

    def test_build_all_keeps_healthy_meters(self):
        snapshots = [CounterSnapshot(MeterId.create(f"jobs.{i}"), 1.0) for i in range(5)]
        snapshots.insert(2, GaugeSnapshot(MeterId.create("broken"), float("nan")))

        records = self.builder.build_all(snapshots)

        assert [r.metric_type for r in records] == [f"{PREFIX}jobs.{i}" for i in range(5)]
