"""Tests for the metric descriptor cache."""

import threading
from unittest.mock import MagicMock

from stackmetrics.exceptions import TransportError
from stackmetrics.export.descriptors import DescriptorCache
from stackmetrics.export.model import MetricKind, ValueType
from stackmetrics.export.transport import InMemoryTransportClient

PREFIX = "custom.googleapis.com/"
PROJECT = "projects/test-project"


class TestDescriptorCache:
    """Tests for DescriptorCache."""

    def setup_method(self):
        self.client = InMemoryTransportClient()
        self.cache = DescriptorCache(self.client, PROJECT, PREFIX)

    def test_first_call_registers_descriptor(self):
        kind = self.cache.ensure_registered(
            f"{PREFIX}requests", ValueType.DOUBLE, "Requests", MetricKind.CUMULATIVE
        )

        assert kind == MetricKind.CUMULATIVE
        assert len(self.client.descriptor_requests) == 1
        descriptor = self.client.descriptor_requests[0]
        assert descriptor.type == f"{PREFIX}requests"
        assert descriptor.value_type == ValueType.DOUBLE
        assert descriptor.description == "Requests"
        assert f"{PREFIX}requests" in self.cache

    def test_second_call_is_cache_hit(self):
        self.cache.ensure_registered(
            f"{PREFIX}requests", ValueType.DOUBLE, None, MetricKind.CUMULATIVE
        )
        kind = self.cache.ensure_registered(
            f"{PREFIX}requests", ValueType.DOUBLE, None, MetricKind.GAUGE
        )

        assert kind == MetricKind.CUMULATIVE
        assert len(self.client.descriptor_requests) == 1

    def test_prepopulation_runs_once_with_prefix_filter(self):
        self.cache.ensure_registered(f"{PREFIX}a", ValueType.DOUBLE, None, MetricKind.GAUGE)
        self.cache.ensure_registered(f"{PREFIX}b", ValueType.DOUBLE, None, MetricKind.GAUGE)

        assert self.client.list_requests == [
            'metric.type = starts_with("custom.googleapis.com/")'
        ]

    def test_prepopulated_kind_takes_precedence(self):
        client = InMemoryTransportClient(
            existing_descriptors={f"{PREFIX}requests": MetricKind.GAUGE}
        )
        cache = DescriptorCache(client, PROJECT, PREFIX)

        kind = cache.ensure_registered(
            f"{PREFIX}requests", ValueType.DOUBLE, None, MetricKind.CUMULATIVE
        )

        assert kind == MetricKind.GAUGE
        assert client.descriptor_requests == []

    def test_prepopulation_failure_treated_as_empty(self):
        self.client.fail_listing = True

        kind = self.cache.ensure_registered(
            f"{PREFIX}requests", ValueType.DOUBLE, None, MetricKind.CUMULATIVE
        )

        assert kind == MetricKind.CUMULATIVE
        assert len(self.client.descriptor_requests) == 1
        assert self.cache.get(f"{PREFIX}requests") == MetricKind.CUMULATIVE

    def test_prepopulation_failure_not_retried(self):
        self.client.fail_listing = True

        self.cache.ensure_registered(f"{PREFIX}a", ValueType.DOUBLE, None, MetricKind.GAUGE)
        self.cache.ensure_registered(f"{PREFIX}b", ValueType.DOUBLE, None, MetricKind.GAUGE)

        assert len(self.client.list_requests) == 1

    def test_registration_failure_not_cached(self):
        self.client.fail_descriptors = True

        kind = self.cache.ensure_registered(
            f"{PREFIX}requests", ValueType.DOUBLE, None, MetricKind.CUMULATIVE
        )

        assert kind == MetricKind.CUMULATIVE
        assert f"{PREFIX}requests" not in self.cache

        # retried on the next lookup
        self.client.fail_descriptors = False
        self.cache.ensure_registered(
            f"{PREFIX}requests", ValueType.DOUBLE, None, MetricKind.CUMULATIVE
        )
        assert len(self.client.descriptor_requests) == 2
        assert f"{PREFIX}requests" in self.cache

    def test_unexpected_client_error_is_not_raised(self):
        client = MagicMock()
        client.list_metric_descriptors.return_value = []
        client.create_metric_descriptor.side_effect = RuntimeError("boom")
        cache = DescriptorCache(client, PROJECT, PREFIX)

        kind = cache.ensure_registered(f"{PREFIX}x", ValueType.INT64, None, MetricKind.GAUGE)

        assert kind == MetricKind.GAUGE
        assert len(cache) == 0

    def test_transport_error_from_listing_is_logged(self, caplog):
        client = MagicMock()
        client.list_metric_descriptors.side_effect = TransportError("unavailable", 503)
        cache = DescriptorCache(client, PROJECT, PREFIX)

        with caplog.at_level("WARNING"):
            cache.ensure_registered(f"{PREFIX}x", ValueType.DOUBLE, None, MetricKind.GAUGE)

        assert "pre-populate" in caplog.text
        client.create_metric_descriptor.assert_called_once()

    def test_clear_triggers_new_prepopulation(self):
        self.cache.ensure_registered(f"{PREFIX}a", ValueType.DOUBLE, None, MetricKind.GAUGE)
        self.cache.clear()

        assert len(self.cache) == 0
        self.cache.ensure_registered(f"{PREFIX}a", ValueType.DOUBLE, None, MetricKind.GAUGE)
        assert len(self.client.list_requests) == 2

    def test_concurrent_registration_of_distinct_types(self):
        types = [f"{PREFIX}metric_{i}" for i in range(50)]
        barrier = threading.Barrier(10)

        def worker(offset):
            barrier.wait()
            for metric_type in types[offset::10]:
                self.cache.ensure_registered(
                    metric_type, ValueType.DOUBLE, None, MetricKind.GAUGE
                )

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert self.cache.known_descriptors() == {t: MetricKind.GAUGE for t in types}
        assert len(self.client.list_requests) == 1
        assert len(self.client.descriptor_requests) == 50

    def test_lookup_waits_for_running_prepopulation(self):
        listing_started = threading.Event()
        release_listing = threading.Event()

        def slow_listing(project_name, filter):
            listing_started.set()
            release_listing.wait(timeout=5)
            return [(f"{PREFIX}requests", MetricKind.GAUGE)]

        client = MagicMock()
        client.list_metric_descriptors.side_effect = slow_listing
        cache = DescriptorCache(client, PROJECT, PREFIX)
        results = {}

        def lookup(key, metric_type, kind):
            results[key] = cache.ensure_registered(metric_type, ValueType.DOUBLE, None, kind)

        first = threading.Thread(
            target=lookup, args=("first", f"{PREFIX}other", MetricKind.GAUGE)
        )
        first.start()
        assert listing_started.wait(timeout=5)
        second = threading.Thread(
            target=lookup, args=("second", f"{PREFIX}requests", MetricKind.CUMULATIVE)
        )
        second.start()
        second.join(timeout=0.1)

        # still blocked behind the listing
        assert second.is_alive()

        release_listing.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert results["second"] == MetricKind.GAUGE
        created = [c.args[1].type for c in client.create_metric_descriptor.call_args_list]
        assert created == [f"{PREFIX}other"]
        assert client.list_metric_descriptors.call_count == 1
