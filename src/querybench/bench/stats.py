"""Statistics computed from a finished run's accumulators.

Provides the histogram summary attached to every metrics record
(percentiles, mean, standard deviation, geometric mean and the
prefix medians used to spot warm-up effects), drift detection between
the start of a run and the whole run, Welch's t-test, and the
descriptive statistics used by the display layer.  All in pure Python.

References:
    Welch's t-test: Welch, B. L. (1947). "The generalization of
        'Student's' problem when several different population
        variances are involved." Biometrika 34(1-2): 28-35.
"""

from __future__ import annotations

import logging
import math
import statistics
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from querybench.bench.errors import StatisticsError
from querybench.bench.hdr import PreciseHdrHistogram

log = logging.getLogger("querybench")

# Prefix label -> divisor of the sample count.
PREFIXES: tuple[tuple[str, int], ...] = (
    ("1stHalf", 2),
    ("1stQuarter", 4),
    ("1stEighth", 8),
)


# ---------------------------------------------------------------------------
# Histogram summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HistogramSummary:
    """Percentiles and moments of one run's latencies, in milliseconds.

    Optional fields are ``None`` when the statistic is undefined for
    the run and are left out of the serialized form.
    """

    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0
    p97_5: float = 0.0
    p99: float = 0.0
    p99_9: float = 0.0
    p99_99: float = 0.0
    p99_999: float = 0.0
    max: float = 0.0
    min: float = 0.0
    total_count: int = 0
    mean: float = 0.0
    std_deviation: float = 0.0
    geo_mean: float | None = None
    p50_1st_half: float | None = None
    p50_1st_quarter: float | None = None
    p50_1st_eighth: float | None = None
    geo_mean_1st_half: float | None = None
    geo_mean_1st_quarter: float | None = None
    geo_mean_1st_eighth: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "p50": self.p50,
            "p75": self.p75,
            "p90": self.p90,
            "p97_5": self.p97_5,
            "p99": self.p99,
            "p99_9": self.p99_9,
            "p99_99": self.p99_99,
            "p99_999": self.p99_999,
            "max": self.max,
            "min": self.min,
            "totalCount": self.total_count,
            "mean": self.mean,
            "stdDeviation": self.std_deviation,
        }
        optional = {
            "geoMean": self.geo_mean,
            "p50_1stHalf": self.p50_1st_half,
            "p50_1stQuarter": self.p50_1st_quarter,
            "p50_1stEighth": self.p50_1st_eighth,
            "geoMean1stHalf": self.geo_mean_1st_half,
            "geoMean1stQuarter": self.geo_mean_1st_quarter,
            "geoMean1stEighth": self.geo_mean_1st_eighth,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistogramSummary:
        return cls(
            p50=data.get("p50", 0.0),
            p75=data.get("p75", 0.0),
            p90=data.get("p90", 0.0),
            p97_5=data.get("p97_5", 0.0),
            p99=data.get("p99", 0.0),
            p99_9=data.get("p99_9", 0.0),
            p99_99=data.get("p99_99", 0.0),
            p99_999=data.get("p99_999", 0.0),
            max=data.get("max", 0.0),
            min=data.get("min", 0.0),
            total_count=data.get("totalCount", 0),
            mean=data.get("mean", 0.0),
            std_deviation=data.get("stdDeviation", 0.0),
            geo_mean=data.get("geoMean"),
            p50_1st_half=data.get("p50_1stHalf"),
            p50_1st_quarter=data.get("p50_1stQuarter"),
            p50_1st_eighth=data.get("p50_1stEighth"),
            geo_mean_1st_half=data.get("geoMean1stHalf"),
            geo_mean_1st_quarter=data.get("geoMean1stQuarter"),
            geo_mean_1st_eighth=data.get("geoMean1stEighth"),
        )

    def prefix_medians(self) -> dict[str, float]:
        """Prefix medians that are present, keyed by prefix label."""
        values = {
            "1stHalf": self.p50_1st_half,
            "1stQuarter": self.p50_1st_quarter,
            "1stEighth": self.p50_1st_eighth,
        }
        return {k: v for k, v in values.items() if v is not None}

    def prefix_geo_means(self) -> dict[str, float]:
        """Prefix geometric means that are present, keyed by prefix label."""
        values = {
            "1stHalf": self.geo_mean_1st_half,
            "1stQuarter": self.geo_mean_1st_quarter,
            "1stEighth": self.geo_mean_1st_eighth,
        }
        return {k: v for k, v in values.items() if v is not None}


def geometric_mean(values: Sequence[float]) -> float:
    """Geometric mean of strictly positive values.

    Raises:
        StatisticsError: If *values* is empty or holds a value <= 0.
    """
    if not values:
        raise StatisticsError("geometric mean of an empty sample")
    if any(v <= 0 for v in values):
        raise StatisticsError("geometric mean needs strictly positive samples")
    return statistics.geometric_mean(values)


def _optional_geometric_mean(values: Sequence[float], label: str) -> float | None:
    try:
        return geometric_mean(values)
    except StatisticsError as exc:
        log.debug("Omitting %s: %s", label, exc.message)
        return None


def _prefix_median(samples: Sequence[float], histogram: PreciseHdrHistogram) -> float:
    prefix = PreciseHdrHistogram(histogram.precision)
    for value in samples:
        prefix.record(value)
    return prefix.percentile(50)


def compute_summary(
    histogram: PreciseHdrHistogram,
    samples: Sequence[float],
    *,
    ordered: bool = True,
) -> HistogramSummary:
    """Summarize one run.

    Args:
        histogram: The run's HDR histogram (all accepted samples).
        samples: The same samples in arrival order.
        ordered: False when *samples* are not in true arrival order;
            prefix statistics are then left out.

    Returns:
        HistogramSummary.  ``geo_mean`` is set only when every sample is
        strictly positive.  Prefix fields use the first ``n // 2``,
        ``n // 4`` and ``n // 8`` samples and are left out when the
        prefix is empty.
    """
    base = histogram.summary()
    prefix_fields: dict[str, float | None] = {}
    if ordered:
        n = len(samples)
        for label, divisor in PREFIXES:
            size = n // divisor
            if size == 0:
                continue
            prefix = samples[:size]
            prefix_fields[f"p50_{label}"] = _prefix_median(prefix, histogram)
            prefix_fields[f"geo_{label}"] = _optional_geometric_mean(
                prefix, f"geoMean{label}"
            )

    return HistogramSummary(
        p50=base["p50"],
        p75=base["p75"],
        p90=base["p90"],
        p97_5=base["p97_5"],
        p99=base["p99"],
        p99_9=base["p99_9"],
        p99_99=base["p99_99"],
        p99_999=base["p99_999"],
        max=histogram.max,
        min=histogram.min,
        total_count=histogram.total_count,
        mean=histogram.mean,
        std_deviation=histogram.std_deviation,
        geo_mean=_optional_geometric_mean(samples, "geoMean"),
        p50_1st_half=prefix_fields.get("p50_1stHalf"),
        p50_1st_quarter=prefix_fields.get("p50_1stQuarter"),
        p50_1st_eighth=prefix_fields.get("p50_1stEighth"),
        geo_mean_1st_half=prefix_fields.get("geo_1stHalf"),
        geo_mean_1st_quarter=prefix_fields.get("geo_1stQuarter"),
        geo_mean_1st_eighth=prefix_fields.get("geo_1stEighth"),
    )


# ---------------------------------------------------------------------------
# Descriptive statistics
# ---------------------------------------------------------------------------


@dataclass
class DescriptiveStats:
    """Summary statistics for a small sample (e.g. per-run medians)."""

    n: int
    mean: float
    median: float
    stdev: float
    min: float
    max: float
    cv: float  # coefficient of variation (stdev/mean)

    def to_dict(self) -> dict[str, float | int]:
        return {
            "n": self.n,
            "mean": round(self.mean, 6),
            "median": round(self.median, 6),
            "stdev": round(self.stdev, 6),
            "min": round(self.min, 6),
            "max": round(self.max, 6),
            "cv": round(self.cv, 6),
        }


def describe(values: Sequence[float]) -> DescriptiveStats:
    """Compute descriptive statistics for a sample.

    Returns NaN fields for an empty sample; stdev and CV are 0.0 when
    there is a single value.
    """
    if not values:
        nan = float("nan")
        return DescriptiveStats(n=0, mean=nan, median=nan, stdev=nan, min=nan, max=nan, cv=nan)

    sorted_v = sorted(values)
    n = len(sorted_v)
    mean = statistics.mean(sorted_v)
    if n >= 2:
        stdev = statistics.stdev(sorted_v)
        cv = stdev / mean if mean != 0 else float("inf")
    else:
        stdev = 0.0
        cv = 0.0

    return DescriptiveStats(
        n=n,
        mean=mean,
        median=_percentile(sorted_v, 0.5),
        stdev=stdev,
        min=sorted_v[0],
        max=sorted_v[-1],
        cv=cv,
    )


def _percentile(sorted_values: Sequence[float], p: float) -> float:
    """Compute the p-th quantile (0..1) using linear interpolation.

    Equivalent to numpy.percentile with interpolation='linear'.
    Assumes sorted_values is already sorted in ascending order.
    """
    n = len(sorted_values)
    if n == 0:
        return float("nan")
    if n == 1:
        return sorted_values[0]

    k = (n - 1) * p
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_values[int(k)]
    d = k - f
    return sorted_values[int(f)] * (1 - d) + sorted_values[int(c)] * d


# ---------------------------------------------------------------------------
# Welch's t-test
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TTestResult:
    """Result of Welch's t-test comparing two independent samples."""

    t_statistic: float
    degrees_of_freedom: float
    p_value: float
    significant_01: bool  # p < 0.01
    significant_05: bool  # p < 0.05
    significant_001: bool  # p < 0.001

    @property
    def significance_stars(self) -> str:
        """Return significance stars: ***, **, *, or ns."""
        if self.significant_001:
            return "***"
        if self.significant_01:
            return "**"
        if self.significant_05:
            return "*"
        return "ns"

    def to_dict(self) -> dict[str, Any]:
        return {
            "t_statistic": _json_float(self.t_statistic),
            "degrees_of_freedom": _json_float(self.degrees_of_freedom),
            "p_value": _json_float(self.p_value),
            "significance": self.significance_stars,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TTestResult:
        def _num(key: str) -> float:
            value = data.get(key)
            return float("nan") if value is None else float(value)

        p = _num("p_value")
        return cls(
            t_statistic=_num("t_statistic"),
            degrees_of_freedom=_num("degrees_of_freedom"),
            p_value=p,
            significant_01=p < 0.01,
            significant_05=p < 0.05,
            significant_001=p < 0.001,
        )


def _json_float(value: float) -> float | None:
    # JSON has no NaN or infinity.
    return value if math.isfinite(value) else None


def _untestable() -> TTestResult:
    nan = float("nan")
    return TTestResult(nan, nan, nan, False, False, False)


def welch_ttest(
    sample_a: Sequence[float],
    sample_b: Sequence[float],
) -> TTestResult:
    """Perform Welch's t-test for two independent samples.

    Tests the null hypothesis that the two populations have equal
    means, without assuming equal variances.

    Args:
        sample_a: First sample (at least 2 values).
        sample_b: Second sample (at least 2 values).

    Returns:
        TTestResult with t-statistic, degrees of freedom, and
        two-tailed p-value.  NaN fields and no significance when
        either sample has fewer than 2 values.
    """
    na, nb = len(sample_a), len(sample_b)
    if na < 2 or nb < 2:
        return _untestable()

    mean_a = statistics.mean(sample_a)
    mean_b = statistics.mean(sample_b)
    var_a = statistics.variance(sample_a)
    var_b = statistics.variance(sample_b)

    if var_a == 0 and var_b == 0:
        if mean_a == mean_b:
            return TTestResult(0.0, float("inf"), 1.0, False, False, False)
        return TTestResult(float("inf"), 0.0, 0.0, True, True, True)

    se_a = var_a / na
    se_b = var_b / nb
    se_diff = math.sqrt(se_a + se_b)
    if se_diff == 0:
        return TTestResult(0.0, float("inf"), 1.0, False, False, False)

    t = (mean_a - mean_b) / se_diff

    # Welch-Satterthwaite degrees of freedom.
    numerator = (se_a + se_b) ** 2
    denominator = (se_a**2 / (na - 1)) + (se_b**2 / (nb - 1))
    df = float("inf") if denominator == 0 else numerator / denominator

    p = _t_cdf_two_tailed(abs(t), df)
    return TTestResult(
        t_statistic=t,
        degrees_of_freedom=df,
        p_value=p,
        significant_01=p < 0.01,
        significant_05=p < 0.05,
        significant_001=p < 0.001,
    )


def _t_cdf_two_tailed(t: float, df: float) -> float:
    """Two-tailed p-value P(|T| > t) for Student's t-distribution.

    Uses the regularized incomplete beta function:
    p = I_x(df/2, 1/2) with x = df / (df + t^2).
    """
    if math.isinf(t):
        return 0.0
    if math.isnan(t) or math.isnan(df) or df <= 0:
        return float("nan")
    if math.isinf(df):
        # Normal limit.
        return math.erfc(t / math.sqrt(2.0))

    x = df / (df + t * t)
    p = _regularized_incomplete_beta(x, df / 2.0, 0.5)
    return min(max(p, 0.0), 1.0)


def _regularized_incomplete_beta(x: float, a: float, b: float) -> float:
    """Compute the regularized incomplete beta function I_x(a, b).

    Continued fraction expansion (Lentz's method).

    Reference: Numerical Recipes, Chapter 6.4.
    """
    if x < 0 or x > 1:
        return float("nan")
    if x == 0:
        return 0.0
    if x == 1:
        return 1.0

    # Symmetry relation converges faster above the mean.
    if x > (a + 1) / (a + b + 2):
        return 1.0 - _regularized_incomplete_beta(1 - x, b, a)

    lbeta = math.lgamma(a) + math.lgamma(b) - math.lgamma(a + b)
    prefactor = math.exp(a * math.log(x) + b * math.log(1 - x) - lbeta - math.log(a))

    max_iter = 200
    epsilon = 1e-14
    tiny = 1e-30

    c = 1.0
    d = 1.0 - (a + b) * x / (a + 1)
    if abs(d) < tiny:
        d = tiny
    d = 1.0 / d
    f = d

    for m in range(1, max_iter + 1):
        num = m * (b - m) * x / ((a + 2 * m - 1) * (a + 2 * m))
        d = 1.0 + num * d
        if abs(d) < tiny:
            d = tiny
        c = 1.0 + num / c
        if abs(c) < tiny:
            c = tiny
        d = 1.0 / d
        f *= c * d

        num = -((a + m) * (a + b + m) * x / ((a + 2 * m) * (a + 2 * m + 1)))
        d = 1.0 + num * d
        if abs(d) < tiny:
            d = tiny
        c = 1.0 + num / c
        if abs(c) < tiny:
            c = tiny
        d = 1.0 / d
        delta = c * d
        f *= delta

        if abs(delta - 1.0) < epsilon:
            break

    return prefactor * f


# ---------------------------------------------------------------------------
# Drift detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DriftReport:
    """How far the start of a run strays from the whole run.

    ``gaps`` maps a summary field name (``p50_1stHalf``,
    ``geoMean1stQuarter``...) to its relative distance from the
    full-run value.  Fields whose gap exceeds ``threshold`` are listed
    in ``flagged``.
    """

    threshold: float
    gaps: Mapping[str, float] = field(default_factory=dict)
    flagged: tuple[str, ...] = ()
    halves_ttest: TTestResult | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "gaps", MappingProxyType(dict(self.gaps)))
        object.__setattr__(self, "flagged", tuple(self.flagged))

    @property
    def drifted(self) -> bool:
        """True if any prefix gap exceeds the threshold."""
        return bool(self.flagged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold": self.threshold,
            "gaps": {k: _json_float(v) for k, v in self.gaps.items()},
            "flagged": list(self.flagged),
            "drifted": self.drifted,
            "halves_ttest": self.halves_ttest.to_dict() if self.halves_ttest else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DriftReport:
        ttest = data.get("halves_ttest")
        return cls(
            threshold=data.get("threshold", 0.10),
            gaps={
                k: float("inf") if v is None else v for k, v in data.get("gaps", {}).items()
            },
            flagged=tuple(data.get("flagged", ())),
            halves_ttest=TTestResult.from_dict(ttest) if ttest else None,
        )


def _relative_gap(prefix: float, full: float) -> float:
    if full == 0:
        return 0.0 if prefix == 0 else float("inf")
    return abs(prefix - full) / abs(full)


def detect_drift(
    summary: HistogramSummary,
    samples: Sequence[float],
    threshold: float = 0.10,
) -> DriftReport:
    """Compare prefix statistics with the full-run values.

    Args:
        summary: The run's summary, with prefix fields filled in.
        samples: The run's samples in arrival order.
        threshold: Relative gap above which a prefix is flagged.

    Returns:
        DriftReport.  ``halves_ttest`` compares the first ``n // 2``
        samples with the rest; it is None when either half has fewer
        than two samples.
    """
    gaps: dict[str, float] = {}
    for label, value in summary.prefix_medians().items():
        gaps[f"p50_{label}"] = _relative_gap(value, summary.p50)
    if summary.geo_mean is not None:
        for label, value in summary.prefix_geo_means().items():
            gaps[f"geoMean{label}"] = _relative_gap(value, summary.geo_mean)
    flagged = tuple(name for name, gap in gaps.items() if gap > threshold)

    half = len(samples) // 2
    first, second = samples[:half], samples[half:]
    ttest = None
    if len(first) >= 2 and len(second) >= 2:
        ttest = welch_ttest(first, second)

    report = DriftReport(threshold=threshold, gaps=gaps, flagged=flagged, halves_ttest=ttest)
    if report.flagged:
        log.info(
            "Drift above %.0f%% in %s", threshold * 100, ", ".join(report.flagged)
        )
    return report
