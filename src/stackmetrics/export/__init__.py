"""Step-aligned export of meter snapshots to Stackdriver (Cloud Monitoring).

Features:
    - Explicit-bucket distribution encoding of histograms
    - Cached metric descriptor registration
    - Per-request partitioning under the backend's time series limit
    - Per-partition failure isolation

Example:
    >>> from stackmetrics.export import ExportConfig, StackdriverExporter
    >>> from stackmetrics.export.transport import RestTransportClient
    >>>
    >>> exporter = StackdriverExporter(
    ...     ExportConfig(project_id="my-project"),
    ...     registry,
    ...     client=RestTransportClient(access_token=token),
    ... )
    >>> exporter.start()
"""

from stackmetrics.export.builder import NamingConvention, TimeSeriesBuilder
from stackmetrics.export.config import TIMESERIES_PER_REQUEST_LIMIT, ExportConfig
from stackmetrics.export.descriptors import DescriptorCache
from stackmetrics.export.distribution import encode_distribution, point_mass_distribution
from stackmetrics.export.exporter import (
    SnapshotSource,
    StackdriverExporter,
    create_exporter,
    rest_client_factory,
)
from stackmetrics.export.model import (
    BatchWindow,
    Distribution,
    MetricDescriptor,
    MetricKind,
    MonitoredResource,
    Point,
    TimeInterval,
    TimeSeriesRecord,
    TypedValue,
    ValueType,
)
from stackmetrics.export.publisher import BatchPublisher, PublishResult, partition
from stackmetrics.export.scheduler import StepScheduler
from stackmetrics.export.transport import (
    InMemoryTransportClient,
    RestTransportClient,
    TransportClient,
)

__all__ = [
    # Builder
    "NamingConvention",
    "TimeSeriesBuilder",
    # Config
    "TIMESERIES_PER_REQUEST_LIMIT",
    "ExportConfig",
    # Descriptors
    "DescriptorCache",
    # Distribution
    "encode_distribution",
    "point_mass_distribution",
    # Exporter
    "SnapshotSource",
    "StackdriverExporter",
    "create_exporter",
    "rest_client_factory",
    # Model
    "BatchWindow",
    "Distribution",
    "MetricDescriptor",
    "MetricKind",
    "MonitoredResource",
    "Point",
    "TimeInterval",
    "TimeSeriesRecord",
    "TypedValue",
    "ValueType",
    # Publisher
    "BatchPublisher",
    "PublishResult",
    "partition",
    # Scheduler
    "StepScheduler",
    # Transport
    "InMemoryTransportClient",
    "RestTransportClient",
    "TransportClient",
]
