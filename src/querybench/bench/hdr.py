"""High-dynamic-range latency histogram.

Latencies are recorded in milliseconds and stored as integer counts in
logarithmically sized buckets, each split into linear sub-buckets, so
the relative error of any reported value stays below
``10 ** -significant_digits`` from microseconds up to minutes.  The
layout follows HdrHistogram (Gil Tene), which makes the text output of
:meth:`PreciseHdrHistogram.output_percentile_distribution` compatible
with other HdrHistogram tools and with wrk2's "Detailed Percentile
spectrum".

``unit_scale`` sets the integer resolution: with the default 1000,
a sample of ``12.3456`` ms is stored as ``12346`` units (microseconds).
Mean and standard deviation are tracked exactly on the raw samples
rather than derived from bucket midpoints.

References:
    HdrHistogram: http://hdrhistogram.org/
    Chan, T. F., Golub, G. H. & LeVeque, R. J. (1979). "Updating
        formulae and a pairwise algorithm for computing sample
        variances."
"""

from __future__ import annotations

import io
import math
import re
import threading
from dataclasses import dataclass
from typing import Any, Iterator

from querybench.bench.errors import HistogramError

# Percentiles reported in the histogram summary, keyed by output name.
SUMMARY_PERCENTILES: dict[str, float] = {
    "p50": 50.0,
    "p75": 75.0,
    "p90": 90.0,
    "p97_5": 97.5,
    "p99": 99.0,
    "p99_9": 99.9,
    "p99_99": 99.99,
    "p99_999": 99.999,
}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PrecisionConfig:
    """Resolution settings shared by every histogram in a session."""

    significant_digits: int = 3
    unit_scale: int = 1000  # integer units per millisecond
    highest_trackable_value: float = 60_000.0  # ms; initial sizing only

    def __post_init__(self) -> None:
        if (
            not isinstance(self.significant_digits, int)
            or isinstance(self.significant_digits, bool)
            or not 1 <= self.significant_digits <= 5
        ):
            raise ValueError(
                f"significant_digits must be an integer in 1..5, got {self.significant_digits!r}"
            )
        if (
            not isinstance(self.unit_scale, int)
            or isinstance(self.unit_scale, bool)
            or self.unit_scale < 1
        ):
            raise ValueError(f"unit_scale must be a positive integer, got {self.unit_scale!r}")
        if not isinstance(self.highest_trackable_value, (int, float)) or not (
            self.highest_trackable_value > 0
        ):
            raise ValueError(
                f"highest_trackable_value must be > 0, got {self.highest_trackable_value!r}"
            )

    @property
    def relative_error(self) -> float:
        """Upper bound on the relative error of any reported value."""
        return 10.0 ** -self.significant_digits

    def to_dict(self) -> dict[str, Any]:
        return {
            "significant_digits": self.significant_digits,
            "unit_scale": self.unit_scale,
            "highest_trackable_value": self.highest_trackable_value,
        }


# ---------------------------------------------------------------------------
# Parsed text rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HDRHistogramParsedStats:
    """One row of a percentile distribution table, kept as text."""

    value: str
    percentile: str
    total_count: str
    of_one_percentile: str

    def to_dict(self) -> dict[str, str]:
        return {
            "value": self.value,
            "percentile": self.percentile,
            "totalCount": self.total_count,
            "ofOnePercentile": self.of_one_percentile,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HDRHistogramParsedStats:
        return cls(
            value=str(data["value"]),
            percentile=str(data["percentile"]),
            total_count=str(data["totalCount"]),
            of_one_percentile=str(data.get("ofOnePercentile", "inf")),
        )


_ROW_PATTERN = re.compile(
    r"^\s*(\d+(?:\.\d+)?)\s+(\d+(?:\.\d+)?)\s+(\d+)(?:\s+(\d+(?:\.\d+)?|inf|Infinity))?\s*$"
)


def parse_hdr_histogram_text(text: str) -> list[HDRHistogramParsedStats]:
    """Parse the rows of an HdrHistogram percentile distribution.

    Accepts the output of :meth:`PreciseHdrHistogram.output_percentile_distribution`
    and wrk2's "Detailed Percentile spectrum".  Header, blank and
    ``#[...]`` footer lines are skipped.  The last row of a distribution
    has no ``1/(1-Percentile)`` column; it is reported as ``"inf"``.
    """
    rows: list[HDRHistogramParsedStats] = []
    for line in text.splitlines():
        if line.lstrip().startswith("#"):
            continue
        m = _ROW_PATTERN.match(line)
        if not m:
            continue
        rows.append(
            HDRHistogramParsedStats(
                value=m.group(1),
                percentile=m.group(2),
                total_count=m.group(3),
                of_one_percentile=m.group(4) or "inf",
            )
        )
    return rows


def expand_parsed_stats(rows: list[HDRHistogramParsedStats]) -> list[float]:
    """Rebuild approximate samples from a percentile distribution.

    Each row contributes ``totalCount - previous totalCount`` copies of
    its value.  The result is sorted by value, not by arrival order.
    """
    samples: list[float] = []
    previous = 0
    for row in rows:
        total = int(row.total_count)
        delta = total - previous
        if delta > 0:
            samples.extend([float(row.value)] * delta)
            previous = total
    return samples


# ---------------------------------------------------------------------------
# Histogram
# ---------------------------------------------------------------------------


class PreciseHdrHistogram:
    """HDR-style latency histogram with exact mean and variance.

    ``record`` and ``merge`` are safe to call from several threads.
    The counts array grows on demand, so values above
    ``highest_trackable_value`` are still recorded.

    Usage::

        h = PreciseHdrHistogram()
        for latency_ms in samples:
            h.record(latency_ms)
        h.percentile(99.9)
    """

    def __init__(self, precision: PrecisionConfig | None = None) -> None:
        self.precision = precision or PrecisionConfig()

        # Sub-buckets must resolve 2 * 10^digits distinct values linearly.
        largest_single_unit = 2 * 10**self.precision.significant_digits
        self._sub_bucket_count_magnitude = (largest_single_unit - 1).bit_length()
        self._sub_bucket_half_count_magnitude = self._sub_bucket_count_magnitude - 1
        self._sub_bucket_count = 1 << self._sub_bucket_count_magnitude
        self._sub_bucket_half_count = self._sub_bucket_count >> 1
        self._sub_bucket_mask = self._sub_bucket_count - 1
        self._leading_bits = self._sub_bucket_half_count_magnitude + 1

        self._counts: list[int] = []
        self._ensure_capacity(self._to_units(self.precision.highest_trackable_value))

        self._total_count = 0
        self._min = math.inf
        self._max = -math.inf
        self._mean = 0.0
        self._m2 = 0.0  # sum of squared deviations from the mean
        self._lock = threading.Lock()

    # -- index arithmetic ---------------------------------------------------

    def _to_units(self, value: float) -> int:
        return int(round(value * self.precision.unit_scale))

    def _to_ms(self, units: int) -> float:
        return units / self.precision.unit_scale

    def _bucket_index(self, units: int) -> int:
        return (units | self._sub_bucket_mask).bit_length() - self._leading_bits

    def _counts_index(self, units: int) -> int:
        bucket = self._bucket_index(units)
        sub_bucket = units >> bucket
        return ((bucket + 1) << self._sub_bucket_half_count_magnitude) + (
            sub_bucket - self._sub_bucket_half_count
        )

    def _lowest_equivalent(self, index: int) -> int:
        bucket = (index >> self._sub_bucket_half_count_magnitude) - 1
        sub_bucket = (index & (self._sub_bucket_half_count - 1)) + self._sub_bucket_half_count
        if bucket < 0:
            sub_bucket -= self._sub_bucket_half_count
            bucket = 0
        return sub_bucket << bucket

    def _highest_equivalent(self, index: int) -> int:
        lowest = self._lowest_equivalent(index)
        bucket = self._bucket_index(lowest)
        sub_bucket = lowest >> bucket
        if sub_bucket >= self._sub_bucket_count:
            bucket += 1
        return lowest + (1 << bucket) - 1

    def _ensure_capacity(self, units: int) -> None:
        needed = self._counts_index(units) + 1
        if needed > len(self._counts):
            # Grow by whole buckets to keep the layout regular.
            half = self._sub_bucket_half_count
            needed = ((needed + half - 1) // half) * half
            self._counts.extend([0] * (needed - len(self._counts)))

    def _reported(self, index: int) -> float:
        """Value reported for a bucket, never above the recorded maximum."""
        return min(self._to_ms(self._highest_equivalent(index)), self._max)

    def _nonzero(self) -> Iterator[tuple[int, int]]:
        for index, count in enumerate(self._counts):
            if count:
                yield index, count

    # -- recording ------------------------------------------------------------

    def record(self, value: float) -> None:
        """Record one latency sample in milliseconds.

        Raises:
            HistogramError: If *value* is missing, negative or not finite.
        """
        if (
            value is None
            or isinstance(value, bool)
            or not isinstance(value, (int, float))
            or not math.isfinite(value)
            or value < 0
        ):
            raise HistogramError(f"cannot record latency {value!r}")

        units = self._to_units(value)
        with self._lock:
            self._ensure_capacity(units)
            self._counts[self._counts_index(units)] += 1
            self._total_count += 1
            if value < self._min:
                self._min = value
            if value > self._max:
                self._max = value
            delta = value - self._mean
            self._mean += delta / self._total_count
            self._m2 += delta * (value - self._mean)

    def merge(self, other: PreciseHdrHistogram) -> None:
        """Add every sample recorded in *other* to this histogram.

        Raises:
            ValueError: If the two histograms use different precision.
        """
        if other.precision != self.precision:
            raise ValueError(
                "cannot merge histograms with different precision: "
                f"{self.precision} vs {other.precision}"
            )
        if other is self:
            raise ValueError("cannot merge a histogram into itself")

        with other._lock:
            counts = list(other._counts)
            n_b = other._total_count
            min_b, max_b = other._min, other._max
            mean_b, m2_b = other._mean, other._m2

        if n_b == 0:
            return

        with self._lock:
            if len(counts) > len(self._counts):
                self._counts.extend([0] * (len(counts) - len(self._counts)))
            for index, count in enumerate(counts):
                if count:
                    self._counts[index] += count

            n_a = self._total_count
            n = n_a + n_b
            delta = mean_b - self._mean
            self._mean += delta * n_b / n
            self._m2 += m2_b + delta * delta * n_a * n_b / n
            self._total_count = n
            self._min = min(self._min, min_b)
            self._max = max(self._max, max_b)

    def copy(self) -> PreciseHdrHistogram:
        """Return an independent histogram with the same samples."""
        clone = PreciseHdrHistogram(self.precision)
        clone.merge(self)
        return clone

    # -- queries --------------------------------------------------------------

    @property
    def total_count(self) -> int:
        return self._total_count

    @property
    def min(self) -> float:
        """Smallest recorded value, or 0.0 when empty."""
        return self._min if self._total_count else 0.0

    @property
    def max(self) -> float:
        """Largest recorded value, or 0.0 when empty."""
        return self._max if self._total_count else 0.0

    @property
    def mean(self) -> float:
        return self._mean if self._total_count else 0.0

    @property
    def std_deviation(self) -> float:
        """Population standard deviation of the recorded values."""
        if self._total_count == 0:
            return 0.0
        return math.sqrt(max(self._m2, 0.0) / self._total_count)

    def percentile(self, p: float) -> float:
        """Value at or below which *p* percent of samples fall.

        ``p`` must be in ``(0, 100]``.  ``percentile(100)`` returns the
        exact recorded maximum.  Returns 0.0 for an empty histogram.
        """
        if not isinstance(p, (int, float)) or isinstance(p, bool) or not 0 < p <= 100:
            raise ValueError(f"percentile must be in (0, 100], got {p!r}")
        with self._lock:
            if self._total_count == 0:
                return 0.0
            target = max(1, int(p / 100.0 * self._total_count + 0.5))
            return self._value_at_count(target)

    def value_at_or_below_count(self, count: int) -> float:
        """Smallest value v such that at least *count* samples are <= v.

        Raises:
            ValueError: If *count* is not in ``1..total_count``.
        """
        with self._lock:
            if not 1 <= count <= self._total_count:
                raise ValueError(f"count must be in 1..{self._total_count}, got {count}")
            return self._value_at_count(count)

    def _value_at_count(self, target: int) -> float:
        running = 0
        for index, count in self._nonzero():
            running += count
            if running >= target:
                return self._reported(index)
        return self._max

    def count_at_or_below(self, value: float) -> int:
        """Number of samples whose bucket lies at or below *value*."""
        if value < 0:
            return 0
        with self._lock:
            limit = self._counts_index(self._to_units(value))
            return sum(self._counts[: limit + 1])

    def summary(self) -> dict[str, float | int]:
        """Standard percentiles plus max and totalCount."""
        data: dict[str, float | int] = {
            key: self.percentile(p) for key, p in SUMMARY_PERCENTILES.items()
        }
        data["max"] = self.max
        data["totalCount"] = self.total_count
        return data

    # -- text output ----------------------------------------------------------

    def percentile_rows(
        self, ticks_per_half_distance: int = 5
    ) -> list[tuple[float, float, int]]:
        """Rows of ``(value, percentile 0..100, cumulative count)``.

        Percentile steps halve each time the remaining distance to 100%
        halves, so the tail is reported in increasing detail.
        """
        with self._lock:
            total = self._total_count
            if total == 0:
                return []
            rows: list[tuple[float, float, int]] = []
            level = 0.0
            running = 0
            for index, count in self._nonzero():
                running += count
                cumulative = 100.0 * running / total
                value = self._reported(index)
                while cumulative >= level:
                    rows.append((value, level, running))
                    if running == total:
                        break
                    half_distance = 2 ** (int(math.log2(100.0 / (100.0 - level))) + 1)
                    level += 100.0 / (ticks_per_half_distance * half_distance)
                if running == total:
                    break
            rows.append((self._max, 100.0, total))
            return rows

    def output_percentile_distribution(self, ticks_per_half_distance: int = 5) -> str:
        """Render the distribution as an HdrHistogram text table."""
        out = io.StringIO()
        out.write(
            f"{'Value':>12} {'Percentile':>14} {'TotalCount':>10} {'1/(1-Percentile)':>14}\n\n"
        )
        for value, level, running in self.percentile_rows(ticks_per_half_distance):
            fraction = level / 100.0
            if level < 100.0:
                inverse = 1.0 / (1.0 - fraction)
                out.write(f"{value:12.3f} {fraction:2.12f} {running:10d} {inverse:14.2f}\n")
            else:
                out.write(f"{value:12.3f} {fraction:2.12f} {running:10d}\n")
        out.write(
            f"#[Mean    = {self.mean:12.3f}, StdDeviation   = {self.std_deviation:12.3f}]\n"
        )
        out.write(f"#[Max     = {self.max:12.3f}, Total count    = {self.total_count:12d}]\n")
        buckets = len(self._counts) // self._sub_bucket_half_count - 1
        out.write(
            f"#[Buckets = {buckets:12d}, SubBuckets     = {self._sub_bucket_count:12d}]\n"
        )
        return out.getvalue()

    def parsed_stats(self) -> list[HDRHistogramParsedStats]:
        """Percentile distribution in parsed-row form."""
        return parse_hdr_histogram_text(self.output_percentile_distribution())
