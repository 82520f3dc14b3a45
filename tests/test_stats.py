"""Tests for querybench.bench.stats: run summaries, drift and Welch's t-test.

Known-value tests check the pure-Python statistics against hand-computed
results.
"""

from __future__ import annotations

import dataclasses
import math
import unittest

from querybench.bench.errors import StatisticsError
from querybench.bench.hdr import PreciseHdrHistogram
from querybench.bench.stats import (
    DriftReport,
    HistogramSummary,
    TTestResult,
    _percentile,
    _regularized_incomplete_beta,
    _t_cdf_two_tailed,
    compute_summary,
    describe,
    detect_drift,
    geometric_mean,
    welch_ttest,
)


def _summary(samples: list[float], *, ordered: bool = True) -> HistogramSummary:
    h = PreciseHdrHistogram()
    for s in samples:
        h.record(s)
    return compute_summary(h, samples, ordered=ordered)


ONE_TO_HUNDRED = [float(v) for v in range(1, 101)]


# ---------------------------------------------------------------------------
# Geometric mean
# ---------------------------------------------------------------------------


class TestGeometricMean(unittest.TestCase):
    def test_known_value(self) -> None:
        self.assertAlmostEqual(geometric_mean([1.0, 10.0, 100.0]), 10.0, places=9)

    def test_empty(self) -> None:
        with self.assertRaises(StatisticsError):
            geometric_mean([])

    def test_zero(self) -> None:
        with self.assertRaises(StatisticsError) as ctx:
            geometric_mean([1.0, 0.0])
        self.assertEqual(ctx.exception.stage, "statistics")


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


class TestComputeSummary(unittest.TestCase):
    def test_one_to_hundred(self) -> None:
        summary = _summary(ONE_TO_HUNDRED)
        self.assertAlmostEqual(summary.p50, 50.0, delta=0.1)
        self.assertAlmostEqual(summary.mean, 50.5, places=9)
        self.assertEqual(summary.total_count, 100)
        self.assertEqual(summary.max, 100.0)
        self.assertEqual(summary.min, 1.0)
        self.assertIsNotNone(summary.geo_mean)

    def test_geo_mean_present_for_positive_samples(self) -> None:
        summary = _summary([2.0, 8.0])
        assert summary.geo_mean is not None
        self.assertAlmostEqual(summary.geo_mean, 4.0, places=9)
        self.assertIn("geoMean", summary.to_dict())

    def test_geo_mean_omitted_with_zero_sample(self) -> None:
        summary = _summary([0.0, 5.0, 10.0])
        self.assertIsNone(summary.geo_mean)
        self.assertNotIn("geoMean", summary.to_dict())

    def test_geo_mean_omitted_when_empty(self) -> None:
        summary = _summary([])
        self.assertIsNone(summary.geo_mean)
        self.assertEqual(summary.total_count, 0)
        self.assertEqual(summary.prefix_medians(), {})

    def test_prefix_medians(self) -> None:
        summary = _summary(ONE_TO_HUNDRED)
        # First 50, 25 and 12 samples: medians 25, 13 and 6.
        assert summary.p50_1st_half is not None
        assert summary.p50_1st_quarter is not None
        assert summary.p50_1st_eighth is not None
        self.assertAlmostEqual(summary.p50_1st_half, 25.0, delta=0.05)
        self.assertAlmostEqual(summary.p50_1st_quarter, 13.0, delta=0.05)
        self.assertAlmostEqual(summary.p50_1st_eighth, 6.0, delta=0.05)
        self.assertEqual(
            set(summary.prefix_geo_means()), {"1stHalf", "1stQuarter", "1stEighth"}
        )

    def test_empty_prefix_omitted(self) -> None:
        # 5 samples: half = 2, quarter = 1, eighth = 0.
        summary = _summary([1.0, 2.0, 3.0, 4.0, 5.0])
        self.assertIsNotNone(summary.p50_1st_half)
        self.assertIsNotNone(summary.p50_1st_quarter)
        self.assertIsNone(summary.p50_1st_eighth)
        self.assertNotIn("p50_1stEighth", summary.to_dict())

    def test_unordered_omits_prefixes(self) -> None:
        summary = _summary(ONE_TO_HUNDRED, ordered=False)
        self.assertIsNone(summary.p50_1st_half)
        self.assertIsNone(summary.geo_mean_1st_half)
        self.assertIsNotNone(summary.geo_mean)

    def test_dict_keys(self) -> None:
        data = _summary(ONE_TO_HUNDRED).to_dict()
        keys = ("p50", "p99_999", "totalCount", "stdDeviation", "p50_1stHalf", "geoMean1stHalf")
        for key in keys:
            self.assertIn(key, data)
        self.assertEqual(HistogramSummary.from_dict(data), _summary(ONE_TO_HUNDRED))


# ---------------------------------------------------------------------------
# Drift
# ---------------------------------------------------------------------------


class TestDetectDrift(unittest.TestCase):
    def test_steady_run_not_flagged(self) -> None:
        samples = [10.0, 11.0, 12.0, 13.0] * 50
        report = detect_drift(_summary(samples), samples, threshold=0.10)
        self.assertFalse(report.drifted)
        self.assertIn("p50_1stHalf", report.gaps)
        self.assertIsNotNone(report.halves_ttest)

    def test_warm_up_flagged(self) -> None:
        # Slow first quarter, fast afterwards.
        samples = [100.0] * 50 + [10.0] * 150
        summary = _summary(samples)
        report = detect_drift(summary, samples, threshold=0.10)
        self.assertTrue(report.drifted)
        self.assertIn("p50_1stQuarter", report.flagged)
        assert report.halves_ttest is not None
        self.assertTrue(report.halves_ttest.significant_001)

    def test_too_few_samples_for_ttest(self) -> None:
        samples = [1.0, 2.0, 3.0]
        report = detect_drift(_summary(samples), samples)
        self.assertIsNone(report.halves_ttest)

    def test_zero_full_value(self) -> None:
        samples = [0.0] * 10
        report = detect_drift(_summary(samples), samples)
        self.assertEqual(report.gaps["p50_1stHalf"], 0.0)
        self.assertNotIn("geoMean1stHalf", report.gaps)

    def test_dict_round_trip(self) -> None:
        samples = [100.0] * 50 + [10.0] * 150
        report = detect_drift(_summary(samples), samples)
        data = report.to_dict()
        self.assertTrue(data["drifted"])
        restored = DriftReport.from_dict(data)
        self.assertEqual(restored.flagged, report.flagged)
        self.assertEqual(restored.gaps, report.gaps)

    def test_report_is_read_only(self) -> None:
        samples = [100.0] * 50 + [10.0] * 150
        report = detect_drift(_summary(samples), samples)
        self.assertIsInstance(report.flagged, tuple)
        with self.assertRaises(TypeError):
            report.gaps["p50_1stHalf"] = 0.0  # type: ignore[index]
        with self.assertRaises(dataclasses.FrozenInstanceError):
            report.threshold = 0.5  # type: ignore[misc]
        assert report.halves_ttest is not None
        with self.assertRaises(dataclasses.FrozenInstanceError):
            report.halves_ttest.significant_001 = False  # type: ignore[misc]

    def test_gaps_copied_from_caller(self) -> None:
        gaps = {"p50_1stHalf": 0.5}
        flagged = ["p50_1stHalf"]
        report = DriftReport(threshold=0.1, gaps=gaps, flagged=flagged)  # type: ignore[arg-type]
        gaps["p50_1stHalf"] = 0.0
        self.assertEqual(report.gaps["p50_1stHalf"], 0.5)
        self.assertEqual(report.flagged, ("p50_1stHalf",))


# ---------------------------------------------------------------------------
# Descriptive statistics
# ---------------------------------------------------------------------------


class TestDescribe(unittest.TestCase):
    def test_describe_basic(self) -> None:
        values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]
        stats = describe(values)
        self.assertEqual(stats.n, 8)
        self.assertAlmostEqual(stats.mean, 5.0, places=5)
        self.assertAlmostEqual(stats.median, 4.5, places=5)
        self.assertEqual(stats.min, 2.0)
        self.assertEqual(stats.max, 9.0)
        self.assertGreater(stats.stdev, 0)

    def test_describe_single_value(self) -> None:
        stats = describe([42.0])
        self.assertEqual(stats.stdev, 0.0)
        self.assertEqual(stats.cv, 0.0)

    def test_describe_empty(self) -> None:
        stats = describe([])
        self.assertEqual(stats.n, 0)
        self.assertTrue(math.isnan(stats.mean))

    def test_percentile_interpolates(self) -> None:
        self.assertAlmostEqual(_percentile([1.0, 2.0, 3.0, 4.0], 0.5), 2.5)
        self.assertEqual(_percentile([7.0], 0.9), 7.0)
        self.assertTrue(math.isnan(_percentile([], 0.5)))


# ---------------------------------------------------------------------------
# Welch's t-test
# ---------------------------------------------------------------------------


class TestWelchTTest(unittest.TestCase):
    def test_known_values(self) -> None:
        # t = (3 - 4) / sqrt(2.5/5 + 2.5/5) = -1.0, df = 8.
        result = welch_ttest([1.0, 2.0, 3.0, 4.0, 5.0], [2.0, 3.0, 4.0, 5.0, 6.0])
        self.assertAlmostEqual(result.t_statistic, -1.0, places=6)
        self.assertAlmostEqual(result.degrees_of_freedom, 8.0, places=6)
        self.assertAlmostEqual(result.p_value, 0.3466, places=3)
        self.assertEqual(result.significance_stars, "ns")

    def test_highly_significant(self) -> None:
        result = welch_ttest([1.0, 1.1, 1.0, 0.9, 1.0], [10.0, 10.1, 10.0, 9.9, 10.0])
        self.assertEqual(result.significance_stars, "***")

    def test_too_few_values(self) -> None:
        result = welch_ttest([1.0], [2.0, 3.0])
        self.assertTrue(math.isnan(result.p_value))
        self.assertFalse(result.significant_05)

    def test_zero_variance(self) -> None:
        same = welch_ttest([3.0, 3.0], [3.0, 3.0])
        self.assertEqual(same.p_value, 1.0)
        different = welch_ttest([3.0, 3.0], [4.0, 4.0])
        self.assertEqual(different.p_value, 0.0)

    def test_dict_drops_non_finite(self) -> None:
        result = welch_ttest([3.0, 3.0], [3.0, 3.0])
        data = result.to_dict()
        self.assertIsNone(data["degrees_of_freedom"])
        restored = TTestResult.from_dict(data)
        self.assertTrue(math.isnan(restored.degrees_of_freedom))
        self.assertEqual(restored.p_value, 1.0)


class TestDistributionHelpers(unittest.TestCase):
    def test_ibeta_bounds(self) -> None:
        self.assertAlmostEqual(_regularized_incomplete_beta(0.0, 2.0, 3.0), 0.0, places=10)
        self.assertAlmostEqual(_regularized_incomplete_beta(1.0, 2.0, 3.0), 1.0, places=10)

    def test_ibeta_symmetric(self) -> None:
        self.assertAlmostEqual(_regularized_incomplete_beta(0.5, 5.0, 5.0), 0.5, places=6)

    def test_ibeta_known_value(self) -> None:
        self.assertAlmostEqual(_regularized_incomplete_beta(0.3, 2.0, 5.0), 0.57983, places=3)

    def test_t_cdf_normal_limit(self) -> None:
        self.assertAlmostEqual(_t_cdf_two_tailed(1.959964, float("inf")), 0.05, places=4)

    def test_t_cdf_zero(self) -> None:
        self.assertAlmostEqual(_t_cdf_two_tailed(0.0, 10.0), 1.0, places=6)


if __name__ == "__main__":
    unittest.main()
