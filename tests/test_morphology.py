"""Tests for erosion/dilation mask cleanup."""

import numpy as np
import pytest

from object_recognition.morphology import (
    clean_mask, dilate, erode, structuring_element,
)


class TestStructuringElement:
    """Tests for kernel construction."""

    def test_square_kernel(self):
        assert structuring_element(3).sum() == 9

    def test_cross_kernel(self):
        kernel = structuring_element(5, four_way=True)
        assert kernel.sum() == 9
        assert not kernel[0, 0]
        assert kernel[2, 0] and kernel[0, 2]

    @pytest.mark.parametrize("k_size", [1, 2, 4])
    def test_invalid_size_raises(self, k_size):
        with pytest.raises(ValueError):
            structuring_element(k_size)


class TestErodeDilate:
    """Tests for the primitive operations."""

    def test_erode_shrinks_square(self):
        mask = np.zeros((20, 20), dtype=np.uint8)
        mask[5:15, 5:15] = 255
        eroded = erode(mask, 3)
        assert np.count_nonzero(eroded) == 8 * 8

    def test_erode_keeps_border_objects(self):
        mask = np.full((10, 10), 255, dtype=np.uint8)
        assert np.all(erode(mask, 3) == 255)

    def test_dilate_grows_pixel(self):
        mask = np.zeros((9, 9), dtype=np.uint8)
        mask[4, 4] = 255
        assert np.count_nonzero(dilate(mask, 3)) == 9
        assert np.count_nonzero(dilate(mask, 3, four_way=True)) == 5

    def test_dilate_does_not_wrap_at_border(self):
        mask = np.zeros((5, 5), dtype=np.uint8)
        mask[0, 0] = 255
        assert np.count_nonzero(dilate(mask, 3)) == 4


class TestCleanMask:
    """Tests for the combined cleanup pass."""

    def test_removes_speckle(self):
        mask = np.zeros((50, 50), dtype=np.uint8)
        mask[10:40, 10:40] = 255
        mask[2, 45] = 255
        cleaned = clean_mask(mask, k_size=3, erode_steps=1, dilate_steps=1)
        assert cleaned[2, 45] == 0
        assert cleaned[25, 25] == 255

    def test_square_survives_opening(self):
        mask = np.zeros((50, 50), dtype=np.uint8)
        mask[10:40, 10:40] = 255
        cleaned = clean_mask(mask, k_size=3, erode_steps=3, dilate_steps=3)
        assert np.array_equal(cleaned, mask)

    def test_same_shape_and_values(self):
        mask = (np.random.RandomState(0).rand(30, 30) > 0.5).astype(np.uint8) * 255
        cleaned = clean_mask(mask)
        assert cleaned.shape == mask.shape
        assert set(np.unique(cleaned).tolist()) <= {0, 255}

    def test_zero_steps_is_identity(self):
        mask = np.zeros((10, 10), dtype=np.uint8)
        mask[3:6, 3:6] = 255
        assert np.array_equal(clean_mask(mask, erode_steps=0, dilate_steps=0), mask)

    def test_rejects_color_input(self):
        with pytest.raises(ValueError):
            clean_mask(np.zeros((10, 10, 3), dtype=np.uint8))
