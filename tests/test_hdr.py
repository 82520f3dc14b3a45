"""Tests for querybench.bench.hdr: the HDR latency histogram."""

from __future__ import annotations

import random
import statistics
import threading
import unittest

from querybench.bench.errors import HistogramError
from querybench.bench.hdr import (
    HDRHistogramParsedStats,
    PrecisionConfig,
    PreciseHdrHistogram,
    expand_parsed_stats,
    parse_hdr_histogram_text,
)


def _histogram(
    values: list[float], precision: PrecisionConfig | None = None
) -> PreciseHdrHistogram:
    h = PreciseHdrHistogram(precision)
    for v in values:
        h.record(v)
    return h


ONE_TO_HUNDRED = [float(v) for v in range(1, 101)]


class TestPrecisionConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        p = PrecisionConfig()
        self.assertEqual(p.significant_digits, 3)
        self.assertAlmostEqual(p.relative_error, 0.001)

    def test_digits_range(self) -> None:
        with self.assertRaises(ValueError):
            PrecisionConfig(significant_digits=0)
        with self.assertRaises(ValueError):
            PrecisionConfig(significant_digits=6)

    def test_unit_scale_positive(self) -> None:
        with self.assertRaises(ValueError):
            PrecisionConfig(unit_scale=0)


class TestRecord(unittest.TestCase):
    def test_rejects_negative(self) -> None:
        h = PreciseHdrHistogram()
        with self.assertRaises(HistogramError):
            h.record(-0.5)
        self.assertEqual(h.total_count, 0)

    def test_rejects_non_finite(self) -> None:
        h = PreciseHdrHistogram()
        for bad in (float("nan"), float("inf")):
            with self.assertRaises(HistogramError):
                h.record(bad)

    def test_rejects_none_and_bool(self) -> None:
        h = PreciseHdrHistogram()
        with self.assertRaises(HistogramError):
            h.record(None)  # type: ignore[arg-type]
        with self.assertRaises(HistogramError):
            h.record(True)

    def test_zero_allowed(self) -> None:
        h = _histogram([0.0])
        self.assertEqual(h.total_count, 1)
        self.assertEqual(h.max, 0.0)

    def test_grows_past_highest_trackable(self) -> None:
        h = _histogram([1.0, 500_000.0], PrecisionConfig(highest_trackable_value=100.0))
        self.assertEqual(h.total_count, 2)
        self.assertEqual(h.max, 500_000.0)
        self.assertEqual(h.percentile(100), 500_000.0)

    def test_concurrent_records(self) -> None:
        h = PreciseHdrHistogram()

        def worker() -> None:
            for v in range(1, 501):
                h.record(float(v))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(h.total_count, 2000)
        self.assertAlmostEqual(h.mean, 250.5, places=6)


class TestQueries(unittest.TestCase):
    def test_one_to_hundred(self) -> None:
        h = _histogram(ONE_TO_HUNDRED)
        self.assertEqual(h.total_count, 100)
        self.assertAlmostEqual(h.percentile(50), 50.0, delta=0.1)
        self.assertAlmostEqual(h.mean, 50.5, places=9)
        self.assertEqual(h.min, 1.0)
        self.assertEqual(h.max, 100.0)
        self.assertAlmostEqual(h.std_deviation, statistics.pstdev(ONE_TO_HUNDRED), places=9)

    def test_percentile_bounds_and_monotonic(self) -> None:
        rng = random.Random(42)
        values = [rng.lognormvariate(3, 1) for _ in range(5000)]
        h = _histogram(values)
        ps = [0.1, 1, 10, 25, 50, 75, 90, 99, 99.9, 99.99, 100]
        results = [h.percentile(p) for p in ps]
        self.assertEqual(results, sorted(results))
        lo = min(values) - 1.0 / h.precision.unit_scale
        for r in results:
            self.assertGreaterEqual(r, lo)
            self.assertLessEqual(r, h.max)

    def test_relative_error(self) -> None:
        rng = random.Random(7)
        values = sorted(rng.uniform(1, 10_000) for _ in range(2001))
        h = _histogram(values)
        exact = values[1000]
        self.assertAlmostEqual(h.percentile(50), exact, delta=exact * 0.002)

    def test_percentile_100_is_exact_max(self) -> None:
        h = _histogram([1.0, 2.0, 123.4567])
        self.assertEqual(h.percentile(100), 123.4567)

    def test_percentile_out_of_range(self) -> None:
        h = _histogram([1.0])
        for bad in (0, -1, 100.5):
            with self.assertRaises(ValueError):
                h.percentile(bad)

    def test_empty(self) -> None:
        h = PreciseHdrHistogram()
        self.assertEqual(h.percentile(50), 0.0)
        self.assertEqual(h.mean, 0.0)
        self.assertEqual(h.std_deviation, 0.0)
        self.assertEqual(h.percentile_rows(), [])

    def test_value_at_or_below_count(self) -> None:
        h = _histogram(ONE_TO_HUNDRED)
        self.assertAlmostEqual(h.value_at_or_below_count(10), 10.0, delta=0.02)
        with self.assertRaises(ValueError):
            h.value_at_or_below_count(0)
        with self.assertRaises(ValueError):
            h.value_at_or_below_count(101)

    def test_count_at_or_below(self) -> None:
        h = _histogram(ONE_TO_HUNDRED)
        self.assertEqual(h.count_at_or_below(50.0), 50)
        self.assertEqual(h.count_at_or_below(-1.0), 0)
        self.assertEqual(h.count_at_or_below(1000.0), 100)

    def test_summary_keys(self) -> None:
        summary = _histogram(ONE_TO_HUNDRED).summary()
        for key in ("p50", "p75", "p90", "p97_5", "p99", "p99_9", "p99_99", "p99_999"):
            self.assertIn(key, summary)
        self.assertEqual(summary["totalCount"], 100)
        self.assertEqual(summary["max"], 100.0)


class TestMerge(unittest.TestCase):
    def setUp(self) -> None:
        rng = random.Random(99)
        self.a = [rng.uniform(1, 50) for _ in range(300)]
        self.b = [rng.uniform(20, 900) for _ in range(200)]
        self.c = [rng.expovariate(0.01) for _ in range(250)]

    def _same(self, x: PreciseHdrHistogram, y: PreciseHdrHistogram) -> None:
        self.assertEqual(x.total_count, y.total_count)
        self.assertEqual(x.min, y.min)
        self.assertEqual(x.max, y.max)
        self.assertAlmostEqual(x.mean, y.mean, places=9)
        self.assertAlmostEqual(x.std_deviation, y.std_deviation, places=6)
        for p in (10, 50, 90, 99, 99.9, 100):
            self.assertEqual(x.percentile(p), y.percentile(p))

    def test_merge_matches_single_histogram(self) -> None:
        merged = _histogram(self.a)
        merged.merge(_histogram(self.b))
        self._same(merged, _histogram(self.a + self.b))

    def test_commutative(self) -> None:
        ab = _histogram(self.a)
        ab.merge(_histogram(self.b))
        ba = _histogram(self.b)
        ba.merge(_histogram(self.a))
        self._same(ab, ba)

    def test_associative(self) -> None:
        left = _histogram(self.a)
        left.merge(_histogram(self.b))
        left.merge(_histogram(self.c))

        bc = _histogram(self.b)
        bc.merge(_histogram(self.c))
        right = _histogram(self.a)
        right.merge(bc)
        self._same(left, right)

    def test_merge_empty(self) -> None:
        h = _histogram(self.a)
        before = h.percentile(50)
        h.merge(PreciseHdrHistogram())
        self.assertEqual(h.total_count, len(self.a))
        self.assertEqual(h.percentile(50), before)

    def test_merge_into_empty(self) -> None:
        h = PreciseHdrHistogram()
        h.merge(_histogram(self.a))
        self._same(h, _histogram(self.a))

    def test_precision_mismatch(self) -> None:
        with self.assertRaises(ValueError):
            PreciseHdrHistogram().merge(PreciseHdrHistogram(PrecisionConfig(significant_digits=2)))

    def test_self_merge(self) -> None:
        h = _histogram(self.a)
        with self.assertRaises(ValueError):
            h.merge(h)

    def test_copy_is_independent(self) -> None:
        h = _histogram(self.a)
        clone = h.copy()
        clone.record(10_000.0)
        self.assertEqual(h.total_count, len(self.a))
        self.assertEqual(clone.total_count, len(self.a) + 1)


class TestPercentileDistribution(unittest.TestCase):
    def test_rows_end_at_max(self) -> None:
        h = _histogram(ONE_TO_HUNDRED)
        rows = h.percentile_rows()
        self.assertEqual(rows[0][1], 0.0)
        self.assertEqual(rows[-1], (100.0, 100.0, 100))
        levels = [level for _, level, _ in rows]
        self.assertEqual(levels, sorted(levels))

    def test_text_round_trip(self) -> None:
        h = _histogram(ONE_TO_HUNDRED)
        text = h.output_percentile_distribution()
        self.assertIn("1/(1-Percentile)", text)
        self.assertIn(f"#[Mean    = {50.5:12.3f}", text)
        rows = parse_hdr_histogram_text(text)
        self.assertEqual(len(rows), len(h.percentile_rows()))
        self.assertEqual(rows[-1].percentile, "1.000000000000")
        self.assertEqual(rows[-1].total_count, "100")
        self.assertEqual(rows[-1].of_one_percentile, "inf")
        self.assertEqual(rows[0].of_one_percentile, "1.00")

    def test_parsed_stats_matches_text(self) -> None:
        h = _histogram(ONE_TO_HUNDRED)
        text = h.output_percentile_distribution()
        self.assertEqual(h.parsed_stats(), parse_hdr_histogram_text(text))

    def test_expand_parsed_stats(self) -> None:
        h = _histogram(ONE_TO_HUNDRED)
        samples = expand_parsed_stats(h.parsed_stats())
        self.assertEqual(len(samples), 100)
        self.assertEqual(samples, sorted(samples))

    def test_parse_wrk2_spectrum(self) -> None:
        text = (
            "       Value   Percentile   TotalCount 1/(1-Percentile)\n"
            "\n"
            "       0.921     0.000000            1         1.00\n"
            "       1.407     0.500000          251         2.00\n"
            "       3.013     1.000000          500\n"
            "#[Mean    =        1.476, StdDeviation   =        0.377]\n"
        )
        rows = parse_hdr_histogram_text(text)
        self.assertEqual(
            rows[1],
            HDRHistogramParsedStats(
                value="1.407", percentile="0.500000", total_count="251", of_one_percentile="2.00"
            ),
        )
        self.assertEqual(rows[2].of_one_percentile, "inf")
        self.assertEqual(len(rows), 3)

    def test_parsed_stats_dict_keys(self) -> None:
        row = HDRHistogramParsedStats("1.0", "0.5", "10", "2.00")
        self.assertEqual(
            row.to_dict(),
            {"value": "1.0", "percentile": "0.5", "totalCount": "10", "ofOnePercentile": "2.00"},
        )
        self.assertEqual(HDRHistogramParsedStats.from_dict(row.to_dict()), row)


if __name__ == "__main__":
    unittest.main()
