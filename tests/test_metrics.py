"""Tests for distance metrics and the metric registry."""

import math

import numpy as np
import pytest

from object_recognition.metrics import (
    MetricType, cosine_distance, get_metric, histogram_intersection_distance,
    parse_metric, ssd_distance, standardization_weights, standardized_distance,
)


class TestPairwiseMetrics:
    """Tests for the individual distance functions."""

    def test_ssd(self):
        assert ssd_distance([0, 0], [1, 1]) == 2.0
        assert ssd_distance([1, 2, 3], [1, 2, 3]) == 0.0

    def test_histogram_intersection(self):
        assert histogram_intersection_distance([0.5, 0.5], [0.5, 0.5]) == pytest.approx(0.0)
        assert histogram_intersection_distance([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)

    def test_cosine(self):
        assert cosine_distance([1, 0], [0, 1]) == pytest.approx(1.0)
        assert cosine_distance([1, 1], [2, 2]) == pytest.approx(0.0, abs=1e-12)

    def test_cosine_zero_norm_is_incomparable(self):
        assert math.isinf(cosine_distance([0, 0], [1, 1]))

    def test_dimension_mismatch_is_incomparable(self):
        assert math.isinf(ssd_distance([1, 2], [1, 2, 3]))
        assert math.isinf(histogram_intersection_distance([1], [1, 0]))

    def test_standardized(self):
        assert standardized_distance([0, 0], [3, 8], [1.0, 0.5]) == pytest.approx(5.0)


class TestStandardizationWeights:
    """Tests for per-dimension statistics."""

    def test_inverse_std(self):
        mean, std, inv_std = standardization_weights(np.array([[0.0, 1.0], [4.0, 1.0]]))
        assert mean.tolist() == [2.0, 1.0]
        assert std.tolist() == [2.0, 0.0]
        assert inv_std.tolist() == [0.5, 1.0]

    def test_single_row(self):
        _, _, inv_std = standardization_weights(np.array([[3.0, 4.0]]))
        assert inv_std.tolist() == [1.0, 1.0]


class TestMetricRegistry:
    """Tests for metric lookup by tag."""

    def test_parse_is_case_insensitive(self):
        assert parse_metric("SSD") is MetricType.SSD
        assert parse_metric(" hist_ix ") is MetricType.HIST_INTERSECTION
        assert parse_metric(MetricType.COSINE) is MetricType.COSINE

    def test_unknown_metric(self):
        with pytest.raises(ValueError):
            parse_metric("manhattan")

    def test_get_metric(self):
        assert get_metric("ssd") is ssd_distance
        assert get_metric(MetricType.COSINE) is cosine_distance

    def test_standardized_needs_weights(self):
        with pytest.raises(ValueError):
            get_metric("standardized")
        distance = get_metric("standardized", inv_std=np.array([1.0, 0.5]))
        assert distance([0, 0], [3, 8]) == pytest.approx(5.0)
