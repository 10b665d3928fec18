"""Cache of metric descriptors known to the backend.

Creating a descriptor is a quota-limited remote call, so the exporter
remembers which metric types exist and with which kind. The first lookup
pre-populates the cache with every descriptor already registered under the
namespace prefix. After that a lookup only reaches the backend for metric
types it has never seen, or whose registration previously failed.

When the backend already knows a metric type under a different kind than
the one requested, the backend's kind wins: points must match the
registered schema or they are rejected.
"""

from __future__ import annotations

import logging
import threading

from stackmetrics.export.model import MetricDescriptor, MetricKind, ValueType
from stackmetrics.export.transport import TransportClient

logger = logging.getLogger(__name__)


class DescriptorCache:
    """Thread-safe mapping of metric type to registered metric kind.

    Example:
        >>> cache = DescriptorCache(client, "projects/p", "custom.googleapis.com/")
        >>> kind = cache.ensure_registered(
        ...     "custom.googleapis.com/http.requests",
        ...     ValueType.DOUBLE,
        ...     "",
        ...     MetricKind.CUMULATIVE,
        ... )
    """

    def __init__(
        self,
        client: TransportClient,
        project_name: str,
        metric_type_prefix: str,
    ) -> None:
        self._client = client
        self._project_name = project_name
        self._prefix = metric_type_prefix
        self._verified: dict[str, MetricKind] = {}
        self._lock = threading.Lock()
        self._prepopulated = False
        self._prepopulate_lock = threading.Lock()

    @property
    def prefix_filter(self) -> str:
        return f'metric.type = starts_with("{self._prefix}")'

    def ensure_registered(
        self,
        metric_type: str,
        value_type: ValueType,
        description: str | None,
        requested_kind: MetricKind,
    ) -> MetricKind:
        """Make sure ``metric_type`` has a descriptor and return its kind.

        Args:
            metric_type: Full metric type including the namespace prefix.
            value_type: Value type of the points.
            description: Human readable description for a new descriptor.
            requested_kind: Kind to register if the type is unknown.

        Returns:
            The kind in effect for this metric type.
        """
        self._prepopulate_once()

        with self._lock:
            cached = self._verified.get(metric_type)
        if cached is not None:
            return cached

        descriptor = MetricDescriptor(
            type=metric_type,
            metric_kind=requested_kind,
            value_type=value_type,
            description=description or "",
        )
        logger.debug(f"Creating metric descriptor: {descriptor.to_dict()}")
        try:
            self._client.create_metric_descriptor(self._project_name, descriptor)
        except Exception as e:
            logger.warning(f"Failed to create metric descriptor for {metric_type}: {e}")
            return requested_kind

        with self._lock:
            # another thread may have registered it meanwhile; first one wins
            return self._verified.setdefault(metric_type, requested_kind)

    def _prepopulate_once(self) -> None:
        if self._prepopulated:
            return
        with self._prepopulate_lock:
            if self._prepopulated:
                return
            # other lookups wait on the lock until the listing is applied
            self._prepopulate()
            self._prepopulated = True

    def _prepopulate(self) -> None:
        try:
            existing = list(
                self._client.list_metric_descriptors(self._project_name, self.prefix_filter)
            )
        except Exception as e:
            logger.warning(
                f"Failed to pre-populate verified descriptors for {self._project_name}: {e}"
            )
            return

        with self._lock:
            for metric_type, kind in existing:
                self._verified[metric_type] = kind
        logger.debug(
            f"Pre-populated {len(existing)} descriptors for {self._project_name} "
            f"with filter {self.prefix_filter}"
        )

    def get(self, metric_type: str) -> MetricKind | None:
        with self._lock:
            return self._verified.get(metric_type)

    def known_descriptors(self) -> dict[str, MetricKind]:
        with self._lock:
            return dict(self._verified)

    def __len__(self) -> int:
        with self._lock:
            return len(self._verified)

    def __contains__(self, metric_type: object) -> bool:
        with self._lock:
            return metric_type in self._verified

    def clear(self) -> None:
        """Forget every descriptor; the next lookup pre-populates again."""
        with self._prepopulate_lock:
            with self._lock:
                self._verified.clear()
            self._prepopulated = False
