"""Histogram to explicit-bucket distribution encoding.

The backend wants an ascending list of finite bounds and one count per
bucket, plus a final overflow bucket with no bound of its own. Registry
snapshots hold cumulative counts, often with a long tail of empty buckets,
so the encoder differences, trims and closes them off.
"""

from __future__ import annotations

from stackmetrics.export.model import Distribution
from stackmetrics.meters.snapshot import HistogramSnapshot, to_base_unit


def encode_distribution(snapshot: HistogramSnapshot, time_domain: bool) -> Distribution:
    """Encode ``snapshot`` as an explicit-bucket distribution.

    Args:
        snapshot: Histogram snapshot with cumulative bucket counts.
        time_domain: Bounds and mean are durations in seconds and must be
            converted to the base time unit.

    Returns:
        Distribution whose bucket counts have exactly one more entry than
        its bounds, with at least one bound.
    """
    histogram = snapshot.histogram_counts

    bucket_counts: list[int] = []
    truncated_sum = 0
    last = 0.0
    for count_at_bucket in histogram:
        bucket_count = int(count_at_bucket.count - last)
        last = count_at_bucket.count
        truncated_sum += bucket_count
        bucket_counts.append(bucket_count)

    # trim zero-count buckets on the right side of the domain
    if bucket_counts and bucket_counts[-1] == 0:
        last_non_zero = 0
        for i in range(len(bucket_counts) - 2, -1, -1):
            if bucket_counts[i] > 0:
                last_non_zero = i
                break
        bucket_counts = bucket_counts[: last_non_zero + 1]

    # the overflow bucket has no bound of its own
    bucket_counts.append(max(0, snapshot.count - truncated_sum))

    bounds = [
        to_base_unit(c.bucket) if time_domain else c.bucket for c in histogram
    ]
    bounds = bounds[: len(bucket_counts) - 1]

    # at least one finite bound is required; with no buckets at all every
    # observation goes to the overflow bucket above it
    if not bounds:
        bounds.append(0.0)
        bucket_counts.insert(0, 0)

    mean = to_base_unit(snapshot.mean) if time_domain else snapshot.mean
    return Distribution(
        count=snapshot.count,
        mean=mean,
        bounds=tuple(bounds),
        bucket_counts=tuple(bucket_counts),
    )


def point_mass_distribution(count: float, mean: float) -> Distribution:
    """Approximate a pre-aggregated count and mean as a distribution.

    Used when only a count and a mean are known (function timers). Every
    observation is placed in the overflow bucket above a single 0.0 bound,
    which says nothing about the shape of the data; heavy-tailed latencies
    in particular are misrepresented.
    """
    n = int(count)
    return Distribution(count=n, mean=mean, bounds=(0.0,), bucket_counts=(0, n))
