"""stackmetrics - step-aligned metric export to Stackdriver (Cloud Monitoring)."""

from stackmetrics.clock import Clock, MockClock, SystemClock
from stackmetrics.exceptions import (
    ConfigError,
    StackMetricsError,
    TransportError,
)
from stackmetrics.export import (
    ExportConfig,
    InMemoryTransportClient,
    RestTransportClient,
    StackdriverExporter,
    create_exporter,
)
from stackmetrics.meters import MeterRegistry

__version__ = "0.1.0"

__all__ = [
    "Clock",
    "MockClock",
    "SystemClock",
    "ConfigError",
    "StackMetricsError",
    "TransportError",
    "ExportConfig",
    "InMemoryTransportClient",
    "RestTransportClient",
    "StackdriverExporter",
    "create_exporter",
    "MeterRegistry",
]
