"""
Adaptive foreground/background binarization.

Clusters pixel intensities into two groups with k-means and thresholds
halfway between the two cluster centers. Assumes a light background and
a darker object, so the binarization is inverted: pixels at or below the
threshold become foreground (255).
"""

import os
import logging

import cv2
import numpy as np

from .preprocessing import to_grayscale

logger = logging.getLogger(__name__)

# k-means restarts and termination criteria (tolerance OR iteration cap)
KMEANS_ATTEMPTS = int(os.environ.get("KMEANS_ATTEMPTS", "3"))
KMEANS_MAX_ITER = int(os.environ.get("KMEANS_MAX_ITER", "10"))
KMEANS_EPSILON = float(os.environ.get("KMEANS_EPSILON", "1.0"))


def kmeans_threshold(gray: np.ndarray,
                     attempts: int = KMEANS_ATTEMPTS,
                     max_iter: int = KMEANS_MAX_ITER,
                     epsilon: float = KMEANS_EPSILON) -> int:
    """
    Find a binarization threshold from a 2-cluster k-means over intensities.

    Results are approximately, not bit-exactly, reproducible: k-means++
    seeding draws from OpenCV's global RNG.

    Args:
        gray: Single-channel uint8 image.
        attempts: Number of k-means restarts; the most compact is kept.
        max_iter: Iteration cap per attempt.
        epsilon: Center-movement tolerance per attempt.

    Returns:
        Integer threshold midway between the two cluster centers.
    """
    data = gray.reshape(-1, 1).astype(np.float32)
    low, high = float(data.min()), float(data.max())
    if data.shape[0] < 2 or low == high:
        return int(low)

    criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
                max_iter, epsilon)
    _, _, centers = cv2.kmeans(data, 2, None, criteria, attempts,
                               cv2.KMEANS_PP_CENTERS)
    c1, c2 = sorted(float(c) for c in centers.ravel())
    return int((c1 + c2) / 2.0)


def binarize(image_np: np.ndarray, **kmeans_kwargs) -> np.ndarray:
    """
    Turn a color image into a foreground mask.

    Args:
        image_np: RGB (or grayscale) uint8 image with at least one pixel.
        **kmeans_kwargs: Overrides for kmeans_threshold().

    Returns:
        Single-channel uint8 mask of the same size, values in {0, 255}.
        A uniform image has no contrast and yields an all-zero mask.

    Raises:
        ValueError: If the image is empty.
    """
    if image_np is None or image_np.size == 0:
        raise ValueError("Cannot binarize an empty image")

    gray = to_grayscale(image_np)
    if gray.min() == gray.max():
        logger.debug("Uniform image, no foreground")
        return np.zeros(gray.shape, dtype=np.uint8)

    threshold = kmeans_threshold(gray, **kmeans_kwargs)
    logger.debug(f"k-means threshold: {threshold}")

    _, mask = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY_INV)
    return mask
