"""Tests for nearest-neighbor matching against feature stores."""

import numpy as np
import pytest

from object_recognition.matcher import match, rank_matches
from object_recognition.metrics import MetricType


class TestMatch:
    """Tests for single best-match lookup."""

    def test_ssd_nearest(self, cache, write_store):
        path = write_store(["A,1,1", "B,5,5"])
        result = match([0, 0], path, cache=cache)
        assert result.label == "A"
        assert result.distance == pytest.approx(2.0)

    def test_missing_store(self, cache, tmp_path):
        assert match([0, 0], str(tmp_path / "missing.csv"), cache=cache) is None

    def test_empty_store(self, cache, write_store):
        assert match([0, 0], write_store([]), cache=cache) is None

    def test_other_dimensions_ignored(self, cache, write_store):
        path = write_store(["C,0,0,0", "A,1,1", "B,5,5"])
        assert match([0, 0], path, cache=cache).label == "A"
        assert match([0, 0, 1], path, cache=cache).label == "C"
        assert match([0, 0, 0, 0], path, cache=cache) is None

    def test_empty_query_raises(self, cache, write_store):
        with pytest.raises(ValueError):
            match([], write_store(["A,1,1"]), cache=cache)

    def test_unknown_metric_raises(self, cache, write_store):
        with pytest.raises(ValueError):
            match([0, 0], write_store(["A,1,1"]), metric="manhattan", cache=cache)

    def test_sees_appended_rows(self, cache, write_store):
        path = write_store(["A,1,1"])
        assert match([9, 9], path, cache=cache).label == "A"
        with open(path, "a") as f:
            f.write("B,9.0000,9.0000\n")
        result = match([9, 9], path, cache=cache)
        assert result.label == "B"
        assert result.distance == pytest.approx(0.0)


class TestRankMatches:
    """Tests for ranked matching across metric families."""

    def test_result_is_minimal(self, cache, write_store):
        rng = np.random.RandomState(0)
        rows = rng.rand(50, 4) * 10
        path = write_store([f"L{i}," + ",".join(f"{v:.4f}" for v in row)
                            for i, row in enumerate(rows)])
        stored = np.round(rows, 4)
        query = rng.rand(4) * 10

        results = rank_matches(query, path, top_n=50, cache=cache)
        expected = ((stored - query) ** 2).sum(axis=1)
        assert len(results) == 50
        assert results[0].distance == pytest.approx(expected.min(), rel=1e-4, abs=1e-3)
        assert results[0].label == f"L{int(expected.argmin())}"
        distances = [r.distance for r in results]
        assert distances == sorted(distances)

    def test_top_n(self, cache, write_store):
        path = write_store(["A,1,1", "B,5,5", "C,2,2"])
        labels = [r.label for r in rank_matches([0, 0], path, top_n=2, cache=cache)]
        assert labels == ["A", "C"]

    def test_standardized(self, cache, write_store):
        path = write_store(["A,0,0", "B,2,10"])
        results = rank_matches([1, 1], path, metric="standardized", top_n=2, cache=cache)
        assert results[0].label == "A"
        assert results[0].distance == pytest.approx(np.sqrt(1.04), rel=1e-5)
        assert results[1].distance == pytest.approx(np.sqrt(4.24), rel=1e-5)

    def test_standardized_changes_winner(self, cache, write_store):
        path = write_store(["A,0,0", "B,0.1,30"])
        assert rank_matches([0.1, 10], path, cache=cache)[0].label == "A"
        assert rank_matches([0.1, 10], path, metric=MetricType.STANDARDIZED,
                            cache=cache)[0].label == "B"

    def test_histogram_intersection(self, cache, write_store):
        path = write_store(["A,0.5,0.5", "B,1,0"])
        result = rank_matches([1, 0], path, metric="hist_ix", cache=cache)[0]
        assert result.label == "B"
        assert result.distance == pytest.approx(0.0)

    def test_cosine_excludes_zero_rows(self, cache, write_store):
        path = write_store(["Z,0,0", "A,1,1"])
        results = rank_matches([2, 2], path, metric="cosine", top_n=5, cache=cache)
        assert [r.label for r in results] == ["A"]
        assert results[0].distance == pytest.approx(0.0, abs=1e-12)

    def test_cosine_zero_query_matches_nothing(self, cache, write_store):
        path = write_store(["A,1,1"])
        assert rank_matches([0, 0], path, metric="cosine", cache=cache) == []

    def test_ties_keep_store_order(self, cache, write_store):
        path = write_store(["A,1,0", "B,0,1"])
        assert rank_matches([0, 0], path, cache=cache)[0].label == "A"


class TestExactScoring:
    """Tests that ranking uses float64 distances, not float32 ones."""

    def test_rows_closer_than_float32_resolution(self, cache, write_store):
        path = write_store(["A,10000.0001", "B,10000.0003"])
        result = match([10000.0004], path, cache=cache)
        assert result.label == "B"
        assert result.distance == pytest.approx(1e-8, rel=1e-3)

    def test_standardized_rows_closer_than_float32_resolution(self, cache, write_store):
        path = write_store(["A,10000.0001,0", "B,10000.0003,0", "C,10000.0100,0"])
        result = match([10000.0004, 0], path, metric="standardized", cache=cache)
        assert result.label == "B"

    def test_values_beyond_float32_range(self, cache, write_store):
        path = write_store(["A,1e20,0", "B,3e20,0"])
        results = rank_matches([0, 0], path, top_n=2, cache=cache)
        assert [r.label for r in results] == ["A", "B"]
        assert results[0].distance == pytest.approx(1e40)

    def test_top_n_matches_brute_force(self, cache, write_store):
        rng = np.random.RandomState(1)
        rows = np.round(rng.rand(200, 9) * 10, 4)
        path = write_store([f"L{i}," + ",".join(f"{v:.4f}" for v in row)
                            for i, row in enumerate(rows)])
        query = rng.rand(9) * 10

        results = rank_matches(query, path, top_n=5, cache=cache)
        expected = ((rows - query) ** 2).sum(axis=1)
        best = np.argsort(expected, kind="stable")[:5]
        assert [r.label for r in results] == [f"L{i}" for i in best]
        assert [r.distance for r in results] == pytest.approx(expected[best].tolist())
