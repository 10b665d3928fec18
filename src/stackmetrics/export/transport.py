"""Transport clients for the monitoring backend.

The exporter talks to the backend only through ``TransportClient``. Two
implementations are provided:

- ``RestTransportClient``: Cloud Monitoring v3 REST API over ``requests``.
  Credentials are the caller's concern: pass a bearer token or a session
  that already authenticates its requests.
- ``InMemoryTransportClient``: keeps every call in memory, for tests and
  dry runs.

Every remote failure surfaces as ``TransportError``.
"""

from __future__ import annotations

import logging
import threading
from abc import abstractmethod
from typing import Iterable, Protocol, Sequence, runtime_checkable

import requests

from stackmetrics.exceptions import TransportError
from stackmetrics.export.model import MetricDescriptor, MetricKind, TimeSeriesRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class TransportClient(Protocol):
    """Connected handle to the monitoring backend."""

    @abstractmethod
    def create_time_series(
        self, project_name: str, records: Sequence[TimeSeriesRecord]
    ) -> None:
        """Write one request worth of time series."""
        ...

    @abstractmethod
    def create_metric_descriptor(
        self, project_name: str, descriptor: MetricDescriptor
    ) -> None:
        """Register a metric descriptor."""
        ...

    @abstractmethod
    def list_metric_descriptors(
        self, project_name: str, filter: str
    ) -> Iterable[tuple[str, MetricKind]]:
        """Yield (metric type, metric kind) for every matching descriptor."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""
        ...


class RestTransportClient:
    """Cloud Monitoring v3 REST client.

    Example:
        >>> client = RestTransportClient(access_token=token)
        >>> client.create_time_series("projects/my-project", records)
    """

    def __init__(
        self,
        *,
        endpoint: str = "https://monitoring.googleapis.com",
        access_token: str | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
        user_agent: str = "stackmetrics",
    ) -> None:
        """Initialize REST client.

        Args:
            endpoint: Base URL of the API.
            access_token: OAuth2 bearer token.
            session: Session to reuse; one is created if omitted.
            timeout_seconds: Per-request timeout.
            user_agent: Value of the User-Agent header.
        """
        self._base_url = f"{endpoint.rstrip('/')}/v3"
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Content-Type": "application/json", "User-Agent": user_agent}
        )
        if access_token:
            self._session.headers["Authorization"] = f"Bearer {access_token}"

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self._base_url}/{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            raise TransportError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {url} returned invalid JSON: {e}") from e

    def create_time_series(
        self, project_name: str, records: Sequence[TimeSeriesRecord]
    ) -> None:
        self._request(
            "POST",
            f"{project_name}/timeSeries",
            json={"timeSeries": [record.to_dict() for record in records]},
        )

    def create_metric_descriptor(
        self, project_name: str, descriptor: MetricDescriptor
    ) -> None:
        self._request("POST", f"{project_name}/metricDescriptors", json=descriptor.to_dict())

    def list_metric_descriptors(
        self, project_name: str, filter: str
    ) -> Iterable[tuple[str, MetricKind]]:
        params = {"filter": filter}
        while True:
            page = self._request("GET", f"{project_name}/metricDescriptors", params=params)
            for descriptor in page.get("metricDescriptors", []):
                kind = descriptor.get("metricKind")
                try:
                    yield descriptor["type"], MetricKind(kind)
                except (KeyError, ValueError):
                    logger.debug(f"Skipping descriptor with unsupported kind: {descriptor}")
            token = page.get("nextPageToken")
            if not token:
                return
            params = {"filter": filter, "pageToken": token}

    def close(self) -> None:
        self._session.close()


class InMemoryTransportClient:
    """Transport that stores calls in memory.

    ``existing_descriptors`` seeds what the backend already knows. Set
    ``fail_time_series``, ``fail_descriptors`` or ``fail_listing`` to make
    the matching calls raise ``TransportError``.
    """

    def __init__(self, existing_descriptors: dict[str, MetricKind] | None = None) -> None:
        self._lock = threading.Lock()
        self.descriptors: dict[str, MetricDescriptor] = {}
        self.existing_descriptors = dict(existing_descriptors or {})
        self.requests: list[list[TimeSeriesRecord]] = []
        self.descriptor_requests: list[MetricDescriptor] = []
        self.list_requests: list[str] = []
        self.fail_time_series = False
        self.fail_descriptors = False
        self.fail_listing = False
        self.closed = False

    @property
    def time_series(self) -> list[TimeSeriesRecord]:
        with self._lock:
            return [record for request in self.requests for record in request]

    def create_time_series(
        self, project_name: str, records: Sequence[TimeSeriesRecord]
    ) -> None:
        if self.fail_time_series:
            raise TransportError("time series rejected", status_code=400)
        with self._lock:
            self.requests.append(list(records))

    def create_metric_descriptor(
        self, project_name: str, descriptor: MetricDescriptor
    ) -> None:
        with self._lock:
            self.descriptor_requests.append(descriptor)
        if self.fail_descriptors:
            raise TransportError("descriptor rejected", status_code=400)
        with self._lock:
            self.descriptors[descriptor.type] = descriptor

    def list_metric_descriptors(
        self, project_name: str, filter: str
    ) -> Iterable[tuple[str, MetricKind]]:
        with self._lock:
            self.list_requests.append(filter)
        if self.fail_listing:
            raise TransportError("listing failed", status_code=503)
        with self._lock:
            return list(self.existing_descriptors.items())

    def close(self) -> None:
        self.closed = True
