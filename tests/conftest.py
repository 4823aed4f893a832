"""Shared test fixtures for object recognition tests."""

import numpy as np
import cv2
import pytest

from object_recognition.feature_db import FeatureDatabaseCache


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [200, 30, 30]
    return img


@pytest.fixture
def blue_circle_image():
    """Generate a 200x200 blue circle on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    cv2.circle(img, (100, 100), 60, (30, 30, 200), -1)
    return img


@pytest.fixture
def green_rectangle_image():
    """Generate a 200x200 green rectangle on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[30:170, 60:140] = [30, 180, 30]
    return img


@pytest.fixture
def blank_image():
    """Generate a plain 200x200 white image."""
    return np.ones((200, 200, 3), dtype=np.uint8) * 255


@pytest.fixture
def two_squares_mask():
    """Mask with a 10x10 and a 3x3 foreground square, well separated."""
    mask = np.zeros((40, 40), dtype=np.uint8)
    mask[5:15, 5:15] = 255
    mask[30:33, 30:33] = 255
    return mask


@pytest.fixture
def cache():
    """A private cache so tests never share loaded stores."""
    return FeatureDatabaseCache()


@pytest.fixture
def write_store(tmp_path):
    """Write rows to a CSV store and return its path."""
    def _write(lines, name="features.csv"):
        path = tmp_path / name
        path.write_text("".join(line + "\n" for line in lines))
        return str(path)
    return _write
