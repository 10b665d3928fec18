"""Periodic export of meter snapshots to Stackdriver (Cloud Monitoring).

Architecture:
    StepScheduler (one daemon thread, step-aligned)
         |
         v
    StackdriverExporter.publish()
         |
         +---> SnapshotSource.snapshot()          collect
         +---> TimeSeriesBuilder.build_all()      build (DescriptorCache)
         +---> BatchPublisher.publish()           partition + transmit
         |
         v
    TransportClient

Usage:
    >>> from stackmetrics import ExportConfig, MeterRegistry, create_exporter
    >>>
    >>> registry = MeterRegistry()
    >>> exporter = create_exporter(
    ...     ExportConfig(project_id="my-project", step_seconds=60),
    ...     registry,
    ...     access_token=token,
    ... )
    >>> registry.counter("jobs.completed").increment()
    >>> ...
    >>> exporter.stop()
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol, Sequence, runtime_checkable

from stackmetrics.clock import Clock, SystemClock
from stackmetrics.export.builder import NamingConvention, TimeSeriesBuilder
from stackmetrics.export.config import ExportConfig
from stackmetrics.export.descriptors import DescriptorCache
from stackmetrics.export.model import BatchWindow
from stackmetrics.export.publisher import BatchPublisher, PublishResult
from stackmetrics.export.scheduler import StepScheduler
from stackmetrics.export.transport import RestTransportClient, TransportClient
from stackmetrics.meters.snapshot import MeterSnapshot

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ExportConfig], TransportClient]


@runtime_checkable
class SnapshotSource(Protocol):
    def snapshot(self) -> Sequence[MeterSnapshot]:
        """Return a snapshot of every registered meter."""
        ...


def rest_client_factory(access_token: str | None = None) -> ClientFactory:
    """Factory building a ``RestTransportClient`` from the export config."""

    def factory(config: ExportConfig) -> TransportClient:
        return RestTransportClient(
            endpoint=config.endpoint,
            access_token=access_token,
            timeout_seconds=config.timeout_seconds,
        )

    return factory


class StackdriverExporter:
    """Publishes snapshots from ``source`` once per step.

    The exporter owns the transport handle and the descriptor cache. When
    no handle is connected (not started, failed to connect, or stopped)
    ``publish`` does nothing.
    """

    def __init__(
        self,
        config: ExportConfig,
        source: SnapshotSource,
        *,
        client: TransportClient | None = None,
        client_factory: ClientFactory | None = None,
        clock: Clock | None = None,
        naming_convention: NamingConvention | None = None,
    ) -> None:
        """Initialize exporter.

        Args:
            config: Export configuration (validated here).
            source: Where meter snapshots come from.
            client: Already connected transport; takes precedence over
                ``client_factory`` and is reused when restarting after
                ``stop``.
            client_factory: Creates the transport on ``start``.
            clock: Wall clock, for batch windows and step alignment.
            naming_convention: Meter name and tag mapping.
        """
        config.validate()
        self._config = config
        self._source = source
        self._clock = clock or SystemClock()
        self._naming = naming_convention
        if client is not None:
            self._client_factory: ClientFactory = lambda _config: client
        else:
            self._client_factory = client_factory or rest_client_factory()
        self._client: TransportClient | None = None
        self._descriptors: DescriptorCache | None = None
        self._previous_batch_end_time = self._clock.wall_time()
        self._publish_lock = threading.Lock()
        self._last_result: PublishResult | None = None
        self._scheduler = StepScheduler(
            config.step_seconds, self.publish_safely, clock=self._clock
        )
        if client is not None:
            self._attach(client)

    @property
    def config(self) -> ExportConfig:
        return self._config

    @property
    def client(self) -> TransportClient | None:
        return self._client

    @property
    def descriptors(self) -> DescriptorCache | None:
        return self._descriptors

    @property
    def last_result(self) -> PublishResult | None:
        return self._last_result

    @property
    def is_running(self) -> bool:
        return self._scheduler.is_running

    def _attach(self, client: TransportClient) -> None:
        self._client = client
        self._descriptors = DescriptorCache(
            client, self._config.project_name, self._config.metric_type_prefix
        )

    def start(self) -> None:
        """Connect (if needed) and start the periodic publish thread."""
        if not self._config.enabled:
            logger.info("Stackdriver export is disabled")
            return
        if self.is_running:
            return

        if self._client is None:
            try:
                client = self._client_factory(self._config)
            except Exception as e:
                logger.error(f"Unable to create Stackdriver client: {e}")
                return
            self._attach(client)
            self._previous_batch_end_time = self._clock.wall_time()

        self._scheduler.start()
        logger.info(
            f"Publishing metrics to Stackdriver project {self._config.project_id} "
            f"every {self._config.step_seconds}s"
        )

    def stop(self) -> None:
        """Cancel the scheduler and release the transport handle."""
        self._scheduler.stop()
        client, self._client = self._client, None
        self._descriptors = None
        if client is not None:
            try:
                client.close()
            except Exception as e:
                logger.warning(f"Failed to close Stackdriver client: {e}")

    def shutdown(self) -> None:
        self.stop()

    def close(self) -> None:
        self.stop()

    def __enter__(self) -> "StackdriverExporter":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _next_window(self) -> BatchWindow:
        wall_time = self._clock.wall_time()
        window = BatchWindow.following(self._previous_batch_end_time, wall_time)
        self._previous_batch_end_time = wall_time
        return window

    def publish(self) -> PublishResult | None:
        """Run one publish cycle.

        Returns:
            The cycle's result, or None if no transport is connected.
        """
        client = self._client
        if client is None:
            logger.error("No Stackdriver client available, skipping publish")
            return None

        with self._publish_lock:
            builder = TimeSeriesBuilder(
                self._config, self._next_window(), self._descriptors, self._naming
            )
            records = builder.build_all(self._source.snapshot())
            result = BatchPublisher(self._config, client).publish(records)
            if result.partitions_failed:
                logger.warning(
                    f"Dropped {result.records_dropped} of "
                    f"{result.records_dropped + result.records_sent} time series "
                    f"({result.partitions_failed} failed requests)"
                )
            self._last_result = result
            return result

    def publish_safely(self) -> None:
        """Publish, logging instead of raising any unexpected exception."""
        try:
            self.publish()
        except Exception:
            logger.warning("Unexpected exception thrown while publishing metrics", exc_info=True)


def create_exporter(
    config: ExportConfig,
    source: SnapshotSource,
    *,
    access_token: str | None = None,
    client: TransportClient | None = None,
    clock: Clock | None = None,
    naming_convention: NamingConvention | None = None,
    start: bool = True,
) -> StackdriverExporter:
    """Create an exporter and (by default) start it.

    Args:
        config: Export configuration.
        source: Snapshot source, usually a ``MeterRegistry``.
        access_token: Bearer token for the REST transport.
        client: Pre-connected transport to use instead of REST.
        clock: Wall clock.
        naming_convention: Meter name and tag mapping.
        start: Start the periodic publish thread immediately.

    Returns:
        The exporter.
    """
    exporter = StackdriverExporter(
        config,
        source,
        client=client,
        client_factory=rest_client_factory(access_token),
        clock=clock,
        naming_convention=naming_convention,
    )
    if start:
        exporter.start()
    return exporter
