"""
Binary mask cleanup by iterated erosion then dilation.

Erosion removes speckle and thin bridges; the following dilations grow
the surviving blobs back and smooth their outlines. Both operations slide
a flat k x k structuring element (optionally reduced to the 4-connected
cross) over a constant-padded copy of the mask: erosion pads with
foreground so image borders do not eat into objects, dilation pads with
background.
"""

import os
import logging

import numpy as np

logger = logging.getLogger(__name__)

MORPH_KERNEL_SIZE = int(os.environ.get("MORPH_KERNEL_SIZE", "3"))
MORPH_ERODE_STEPS = int(os.environ.get("MORPH_ERODE_STEPS", "3"))
MORPH_DILATE_STEPS = int(os.environ.get("MORPH_DILATE_STEPS", "3"))
MORPH_FOUR_WAY = os.environ.get("MORPH_FOUR_WAY", "0") == "1"


def structuring_element(k_size: int, four_way: bool = False) -> np.ndarray:
    """
    Build a boolean k x k kernel.

    Args:
        k_size: Odd kernel size, at least 3.
        four_way: Keep only the center row and column (cross shape).

    Raises:
        ValueError: If k_size is even or smaller than 3.
    """
    if k_size < 3 or k_size % 2 == 0:
        raise ValueError(f"Kernel size must be odd and >= 3, got {k_size}")

    if not four_way:
        return np.ones((k_size, k_size), dtype=bool)

    pad = k_size // 2
    kernel = np.zeros((k_size, k_size), dtype=bool)
    kernel[pad, :] = True
    kernel[:, pad] = True
    return kernel


def _check_mask(mask: np.ndarray) -> np.ndarray:
    if mask is None or mask.ndim != 2 or mask.size == 0:
        raise ValueError("Expected a non-empty single-channel mask")
    return mask > 0


def erode(mask: np.ndarray, k_size: int = 3, four_way: bool = False) -> np.ndarray:
    """A pixel stays foreground only if every kernel cell is foreground."""
    fg = _check_mask(mask)
    kernel = structuring_element(k_size, four_way)
    pad = k_size // 2
    h, w = fg.shape
    padded = np.pad(fg, pad, mode="constant", constant_values=True)

    result = np.ones((h, w), dtype=bool)
    for dy, dx in zip(*np.nonzero(kernel)):
        result &= padded[dy:dy + h, dx:dx + w]
    return result.astype(np.uint8) * 255


def dilate(mask: np.ndarray, k_size: int = 3, four_way: bool = False) -> np.ndarray:
    """A pixel becomes foreground if any kernel cell is foreground."""
    fg = _check_mask(mask)
    kernel = structuring_element(k_size, four_way)
    pad = k_size // 2
    h, w = fg.shape
    padded = np.pad(fg, pad, mode="constant", constant_values=False)

    result = np.zeros((h, w), dtype=bool)
    for dy, dx in zip(*np.nonzero(kernel)):
        result |= padded[dy:dy + h, dx:dx + w]
    return result.astype(np.uint8) * 255


def clean_mask(mask: np.ndarray,
               k_size: int = MORPH_KERNEL_SIZE,
               erode_steps: int = MORPH_ERODE_STEPS,
               dilate_steps: int = MORPH_DILATE_STEPS,
               four_way: bool = MORPH_FOUR_WAY) -> np.ndarray:
    """
    Apply erode_steps erosions followed by dilate_steps dilations.

    Args:
        mask: Single-channel mask (nonzero = foreground).
        k_size: Odd structuring element size, at least 3.
        erode_steps: Number of erosion passes.
        dilate_steps: Number of dilation passes.
        four_way: Use the 4-connected cross instead of the full square.

    Returns:
        uint8 mask of the same size, values in {0, 255}.
    """
    current = _check_mask(mask).astype(np.uint8) * 255

    for _ in range(erode_steps):
        current = erode(current, k_size, four_way)
    for _ in range(dilate_steps):
        current = dilate(current, k_size, four_way)

    logger.debug(
        f"Cleaned mask: {erode_steps} erosions, {dilate_steps} dilations, "
        f"k={k_size}, four_way={four_way}"
    )
    return current
