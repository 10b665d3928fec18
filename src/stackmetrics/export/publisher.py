"""Partitioned transmission of one cycle's time series.

The backend caps the number of time series per request, so records are
split into partitions and each partition is sent as its own request. A
failed partition is logged and dropped; it never stops the others.
Delivery is at-most-once: nothing is buffered or retried.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Sequence, TypeVar

from stackmetrics.export.config import ExportConfig
from stackmetrics.export.model import TimeSeriesRecord
from stackmetrics.export.transport import TransportClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``.

    Yields ``ceil(len(items) / size)`` partitions; encounter order is kept.
    """
    if size <= 0:
        raise ValueError("partition size must be positive")
    partitions: list[list[T]] = []
    for index, item in enumerate(items):
        if index % size == 0:
            partitions.append([])
        partitions[index // size].append(item)
    return partitions


@dataclass
class PublishResult:
    """Outcome of one publish cycle.

    Attributes:
        partitions_sent: Partitions accepted by the backend.
        partitions_failed: Partitions whose request failed.
        records_sent: Time series in accepted partitions.
        records_dropped: Time series in failed partitions.
        duration_ms: Time spent transmitting.
        errors: One message per failed partition.
    """

    partitions_sent: int = 0
    partitions_failed: int = 0
    records_sent: int = 0
    records_dropped: int = 0
    duration_ms: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.partitions_failed == 0

    def to_dict(self) -> dict[str, int | float | list[str]]:
        return {
            "partitions_sent": self.partitions_sent,
            "partitions_failed": self.partitions_failed,
            "records_sent": self.records_sent,
            "records_dropped": self.records_dropped,
            "duration_ms": self.duration_ms,
            "errors": list(self.errors),
        }


class BatchPublisher:
    """Sends time series to the backend, one request per partition.

    Example:
        >>> publisher = BatchPublisher(config, client)
        >>> result = publisher.publish(records)
        >>> result.records_dropped
        0
    """

    def __init__(self, config: ExportConfig, client: TransportClient) -> None:
        self._config = config
        self._client = client

    def publish(self, records: Sequence[TimeSeriesRecord]) -> PublishResult:
        """Transmit ``records`` and report what was sent and dropped."""
        start_time = time.monotonic()
        result = PublishResult()
        partitions = partition(records, self._config.partition_size)

        if self._config.max_workers > 1 and len(partitions) > 1:
            with ThreadPoolExecutor(
                max_workers=self._config.max_workers,
                thread_name_prefix="stackdriver-partition",
            ) as executor:
                outcomes = list(executor.map(self._send, partitions))
        else:
            outcomes = [self._send(p) for p in partitions]

        for chunk, error in zip(partitions, outcomes):
            if error is None:
                result.partitions_sent += 1
                result.records_sent += len(chunk)
            else:
                result.partitions_failed += 1
                result.records_dropped += len(chunk)
                result.errors.append(error)

        result.duration_ms = (time.monotonic() - start_time) * 1000
        return result

    def _send(self, chunk: list[TimeSeriesRecord]) -> str | None:
        """Send one partition; return an error message instead of raising."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Publishing batch of {len(chunk)} time series to {self._config.project_name}"
            )
        try:
            self._client.create_time_series(self._config.project_name, chunk)
        except Exception as e:
            logger.warning(f"Failed to send metrics to Stackdriver: {e}")
            return str(e)
        logger.debug(f"Successfully sent {len(chunk)} time series to Stackdriver")
        return None
