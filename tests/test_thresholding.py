"""Tests for k-means adaptive binarization."""

import numpy as np
import pytest

from object_recognition.thresholding import binarize, kmeans_threshold


class TestKmeansThreshold:
    """Tests for the 2-means threshold search."""

    def test_threshold_between_two_levels(self):
        gray = np.full((50, 50), 220, dtype=np.uint8)
        gray[10:30, 10:30] = 40
        threshold = kmeans_threshold(gray)
        assert 40 < threshold < 220

    def test_midpoint_of_clusters(self):
        gray = np.full((20, 20), 200, dtype=np.uint8)
        gray[:, :10] = 100
        assert kmeans_threshold(gray) == 150

    def test_uniform_image(self):
        gray = np.full((10, 10), 77, dtype=np.uint8)
        assert kmeans_threshold(gray) == 77


class TestBinarize:
    """Tests for foreground mask generation."""

    def test_dark_object_is_foreground(self, red_square_image):
        mask = binarize(red_square_image)
        assert mask.shape == red_square_image.shape[:2]
        assert mask.dtype == np.uint8
        assert mask[100, 100] == 255
        assert mask[5, 5] == 0

    def test_values_are_binary(self, blue_circle_image):
        mask = binarize(blue_circle_image)
        assert set(np.unique(mask).tolist()) <= {0, 255}

    def test_foreground_area_matches_object(self, red_square_image):
        mask = binarize(red_square_image)
        assert np.count_nonzero(mask) == 120 * 120

    def test_uniform_image_has_no_foreground(self, blank_image):
        assert not np.any(binarize(blank_image))

    def test_grayscale_input(self):
        gray = np.full((50, 50), 240, dtype=np.uint8)
        gray[20:30, 20:30] = 10
        mask = binarize(gray)
        assert np.count_nonzero(mask) == 100

    def test_empty_image_raises(self):
        with pytest.raises(ValueError):
            binarize(np.zeros((0, 0, 3), dtype=np.uint8))
