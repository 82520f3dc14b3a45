"""Tests for querybench.bench.basic_histogram."""

from __future__ import annotations

import random
import unittest

from querybench.bench.basic_histogram import (
    OUTLIER,
    BasicHistogram,
    BasicHistogramBuilder,
    HistBucket,
    HistogramPolicy,
    build_basic_histogram,
)
from querybench.bench.errors import HistogramError


class TestHistogramPolicy(unittest.TestCase):
    def test_equal_width_edges(self) -> None:
        policy = HistogramPolicy(lower_bound=0, upper_bound=100, bucket_count=4)
        self.assertEqual(policy.edges, (0.0, 25.0, 50.0, 75.0, 100.0))

    def test_explicit_boundaries_win(self) -> None:
        policy = HistogramPolicy(upper_bound=5, boundaries=(1.0, 10.0, 100.0))
        self.assertEqual(policy.edges, (1.0, 10.0, 100.0))
        self.assertEqual(policy.to_dict(), {"boundaries": [1.0, 10.0, 100.0]})

    def test_boundaries_must_increase(self) -> None:
        with self.assertRaises(ValueError):
            HistogramPolicy(boundaries=(1.0, 1.0, 2.0))

    def test_boundaries_need_two_edges(self) -> None:
        with self.assertRaises(ValueError):
            HistogramPolicy(boundaries=(1.0,))

    def test_upper_above_lower(self) -> None:
        with self.assertRaises(ValueError):
            HistogramPolicy(lower_bound=10, upper_bound=10)

    def test_bucket_count_positive(self) -> None:
        with self.assertRaises(ValueError):
            HistogramPolicy(bucket_count=0)

    def test_non_numeric_bound(self) -> None:
        with self.assertRaises(TypeError):
            HistogramPolicy(upper_bound="100")  # type: ignore[arg-type]


class TestBucketFor(unittest.TestCase):
    def setUp(self) -> None:
        self.builder = BasicHistogramBuilder(
            HistogramPolicy(lower_bound=0, upper_bound=100, bucket_count=4)
        )

    def test_lower_edge_inclusive(self) -> None:
        self.assertEqual(self.builder.bucket_for(0.0), 0)
        self.assertEqual(self.builder.bucket_for(25.0), 1)

    def test_last_edge_inclusive(self) -> None:
        self.assertEqual(self.builder.bucket_for(100.0), 3)

    def test_outside_is_outlier(self) -> None:
        self.assertEqual(self.builder.bucket_for(100.5), OUTLIER)

    def test_below_lower_bound_is_outlier(self) -> None:
        builder = BasicHistogramBuilder(HistogramPolicy(lower_bound=10, upper_bound=20))
        self.assertEqual(builder.bucket_for(5.0), OUTLIER)


class TestBasicHistogramBuilder(unittest.TestCase):
    def test_outlier_policy(self) -> None:
        """99 samples under the 1000 ms bound plus one at 5000 ms."""
        policy = HistogramPolicy(lower_bound=0, upper_bound=1000, bucket_count=10)
        samples = [float(v) for v in range(1, 100)] + [5000.0]
        hist = build_basic_histogram(samples, policy)
        self.assertEqual(hist.outliers_removed, 1)
        self.assertEqual(sum(b.count for b in hist.buckets), 99)
        self.assertEqual(hist.total_count, 100)

    def test_count_invariant_random(self) -> None:
        rng = random.Random(1234)
        policy = HistogramPolicy(lower_bound=10, upper_bound=500, bucket_count=7)
        samples = [rng.uniform(0, 700) for _ in range(1000)]
        hist = build_basic_histogram(samples, policy)
        self.assertEqual(sum(b.count for b in hist.buckets) + hist.outliers_removed, 1000)
        for bucket in hist.buckets:
            self.assertLessEqual(bucket.count_1st_half, bucket.count)

    def test_first_half_by_arrival(self) -> None:
        policy = HistogramPolicy(lower_bound=0, upper_bound=20, bucket_count=2)
        # Fast samples first, slow samples second.
        samples = [1.0] * 5 + [15.0] * 5
        hist = build_basic_histogram(samples, policy)
        fast, slow = hist.buckets
        self.assertEqual((fast.count, fast.count_1st_half), (5, 5))
        self.assertEqual((slow.count, slow.count_1st_half), (5, 0))

    def test_odd_total_first_half_is_floor(self) -> None:
        hist = build_basic_histogram([1.0, 1.0, 1.0], HistogramPolicy(upper_bound=10))
        self.assertEqual(hist.buckets[0].count, 3)
        self.assertEqual(hist.buckets[0].count_1st_half, 1)

    def test_first_half_needs_final_total(self) -> None:
        """The split is decided at finalize time, not at record time."""
        builder = BasicHistogramBuilder(HistogramPolicy(upper_bound=10, bucket_count=1))
        for i in range(4):
            builder.record(1.0, i)
        self.assertEqual(builder.finalize().buckets[0].count_1st_half, 2)
        self.assertEqual(builder.finalize(8).buckets[0].count_1st_half, 4)

    def test_total_expected_count_used(self) -> None:
        builder = BasicHistogramBuilder(HistogramPolicy(upper_bound=10, bucket_count=1))
        builder.record(1.0, 0, total_expected_count=10)
        builder.record(1.0, 6, total_expected_count=10)
        hist = builder.finalize()
        self.assertEqual(hist.buckets[0].count_1st_half, 1)

    def test_gte_strictly_increasing(self) -> None:
        hist = build_basic_histogram([1.0], HistogramPolicy(upper_bound=100, bucket_count=5))
        gtes = [b.gte for b in hist.buckets]
        self.assertEqual(gtes, sorted(set(gtes)))
        self.assertEqual(len(gtes), 5)

    def test_rejects_negative(self) -> None:
        builder = BasicHistogramBuilder()
        with self.assertRaises(HistogramError):
            builder.record(-1.0, 0)
        self.assertEqual(builder.recorded, 0)

    def test_rejects_nan(self) -> None:
        with self.assertRaises(HistogramError):
            BasicHistogramBuilder().record(float("nan"), 0)

    def test_rejects_negative_index(self) -> None:
        with self.assertRaises(ValueError):
            BasicHistogramBuilder().record(1.0, -1)

    def test_empty(self) -> None:
        hist = BasicHistogramBuilder(HistogramPolicy(bucket_count=3)).finalize()
        self.assertEqual(hist.total_count, 0)
        self.assertEqual(len(hist.buckets), 3)


class TestBasicHistogramSerialization(unittest.TestCase):
    def test_to_dict_keys(self) -> None:
        hist = BasicHistogram(
            buckets=(HistBucket(gte=0.0, count=3, count_1st_half=1),),
            outliers_removed=2,
        )
        self.assertEqual(
            hist.to_dict(),
            {
                "buckets": [{"gte": 0.0, "count": 3, "count1stHalf": 1}],
                "outliersRemoved": 2,
            },
        )
        self.assertEqual(BasicHistogram.from_dict(hist.to_dict()), hist)


if __name__ == "__main__":
    unittest.main()
