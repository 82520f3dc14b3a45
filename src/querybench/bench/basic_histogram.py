"""Fixed-edge latency buckets with outlier and first-half tracking.

The basic histogram complements the HDR histogram with a small, readable
distribution: a handful of buckets whose edges are fixed up front by a
:class:`HistogramPolicy`.  Each bucket also reports how many of its
samples arrived in the first half of the run, which makes warm-up
effects visible at a glance.

Bucket ``i`` covers ``[edge_i, edge_{i+1})``; the last bucket also
includes its upper edge.  Samples outside the edges are outliers: they
are counted in ``outliersRemoved`` and in no bucket, so bucket counts
plus outliers always equal the number of samples recorded.
"""

from __future__ import annotations

import bisect
import math
import threading
from dataclasses import dataclass
from typing import Any

from querybench.bench.errors import HistogramError

# Marker stored for samples outside the policy edges.
OUTLIER = -1


def _finite_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HistogramPolicy:
    """Bucket layout for the basic histogram.

    Either give explicit ``boundaries`` (at least two strictly
    increasing edges) or let ``lower_bound``, ``upper_bound`` and
    ``bucket_count`` describe equal-width buckets.  Explicit boundaries
    win when both are given.
    """

    lower_bound: float = 0.0
    upper_bound: float = 10_000.0
    bucket_count: int = 50
    boundaries: tuple[float, ...] | None = None

    def __post_init__(self) -> None:
        if self.boundaries is not None:
            edges = tuple(self.boundaries)
            if len(edges) < 2:
                raise ValueError("boundaries needs at least 2 edges")
            if not all(_finite_number(e) for e in edges):
                raise TypeError("boundaries must be finite numbers")
            if any(b <= a for a, b in zip(edges, edges[1:])):
                raise ValueError("boundaries must be strictly increasing")
            object.__setattr__(self, "boundaries", edges)
            return

        if not _finite_number(self.lower_bound) or not _finite_number(self.upper_bound):
            raise TypeError("lower_bound and upper_bound must be finite numbers")
        if self.upper_bound <= self.lower_bound:
            raise ValueError(
                f"upper_bound ({self.upper_bound}) must be greater than "
                f"lower_bound ({self.lower_bound})"
            )
        if (
            not isinstance(self.bucket_count, int)
            or isinstance(self.bucket_count, bool)
            or self.bucket_count < 1
        ):
            raise ValueError(f"bucket_count must be a positive integer, got {self.bucket_count!r}")

    @property
    def edges(self) -> tuple[float, ...]:
        """All bucket edges, lowest first (``bucket_count + 1`` values)."""
        if self.boundaries is not None:
            return self.boundaries
        width = (self.upper_bound - self.lower_bound) / self.bucket_count
        inner = tuple(self.lower_bound + i * width for i in range(self.bucket_count))
        return inner + (float(self.upper_bound),)

    def to_dict(self) -> dict[str, Any]:
        if self.boundaries is not None:
            return {"boundaries": list(self.boundaries)}
        return {
            "lower_bound": self.lower_bound,
            "upper_bound": self.upper_bound,
            "bucket_count": self.bucket_count,
        }


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HistBucket:
    """One bucket: samples ``>= gte`` and below the next bucket's ``gte``."""

    gte: float
    count: int
    count_1st_half: int

    def to_dict(self) -> dict[str, Any]:
        return {"gte": self.gte, "count": self.count, "count1stHalf": self.count_1st_half}


@dataclass(frozen=True)
class BasicHistogram:
    """Finalized bucket counts for one run."""

    buckets: tuple[HistBucket, ...] = ()
    outliers_removed: int = 0

    @property
    def total_count(self) -> int:
        return sum(b.count for b in self.buckets) + self.outliers_removed

    def to_dict(self) -> dict[str, Any]:
        return {
            "buckets": [b.to_dict() for b in self.buckets],
            "outliersRemoved": self.outliers_removed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BasicHistogram:
        return cls(
            buckets=tuple(
                HistBucket(
                    gte=b["gte"],
                    count=b["count"],
                    count_1st_half=b.get("count1stHalf", 0),
                )
                for b in data.get("buckets", [])
            ),
            outliers_removed=data.get("outliersRemoved", 0),
        )


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class BasicHistogramBuilder:
    """Accumulate samples into the buckets described by a policy.

    ``record`` only stores which bucket each arrival landed in; the
    first-half split is applied by ``finalize`` once the total is known.
    """

    def __init__(self, policy: HistogramPolicy | None = None) -> None:
        self.policy = policy or HistogramPolicy()
        self._edges = self.policy.edges
        self._placements: dict[int, int] = {}  # arrival index -> bucket or OUTLIER
        self._expected_total: int | None = None
        self._lock = threading.Lock()

    def bucket_for(self, latency: float) -> int:
        """Bucket index for *latency*, or ``OUTLIER``."""
        edges = self._edges
        if latency < edges[0] or latency > edges[-1]:
            return OUTLIER
        if latency == edges[-1]:
            return len(edges) - 2
        return bisect.bisect_right(edges, latency) - 1

    def record(
        self,
        latency: float,
        arrival_index: int,
        total_expected_count: int | None = None,
    ) -> None:
        """Place one sample.

        Args:
            latency: Sample latency in milliseconds.
            arrival_index: Zero-based position of the sample in the run.
            total_expected_count: Total sample count when the caller
                already knows it; ``finalize`` falls back to it.

        Raises:
            HistogramError: If *latency* is negative or not finite.
        """
        if not _finite_number(latency) or latency < 0:
            raise HistogramError(f"cannot record latency {latency!r}")
        if arrival_index < 0:
            raise ValueError(f"arrival_index must be >= 0, got {arrival_index}")
        placement = self.bucket_for(latency)
        with self._lock:
            self._placements[arrival_index] = placement
            if total_expected_count is not None:
                self._expected_total = total_expected_count

    @property
    def recorded(self) -> int:
        return len(self._placements)

    def finalize(self, total_count: int | None = None) -> BasicHistogram:
        """Count each bucket and its first-half share.

        A sample counts toward ``count1stHalf`` when its arrival index
        is below ``total // 2``.  *total* is *total_count*, else the
        last ``total_expected_count`` given to ``record``, else the
        number of samples recorded.
        """
        with self._lock:
            placements = dict(self._placements)
            expected = self._expected_total

        total = total_count
        if total is None:
            total = expected if expected is not None else len(placements)
        half = total // 2

        counts = [0] * (len(self._edges) - 1)
        first_half = [0] * (len(self._edges) - 1)
        outliers = 0
        for arrival_index, placement in placements.items():
            if placement == OUTLIER:
                outliers += 1
                continue
            counts[placement] += 1
            if arrival_index < half:
                first_half[placement] += 1

        buckets = tuple(
            HistBucket(gte=self._edges[i], count=counts[i], count_1st_half=first_half[i])
            for i in range(len(counts))
        )
        return BasicHistogram(buckets=buckets, outliers_removed=outliers)


def build_basic_histogram(
    samples: list[float], policy: HistogramPolicy | None = None
) -> BasicHistogram:
    """Bucket an arrival-ordered list of samples in one call."""
    builder = BasicHistogramBuilder(policy)
    for index, latency in enumerate(samples):
        builder.record(latency, index)
    return builder.finalize(len(samples))
