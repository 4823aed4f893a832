"""
Image preprocessing helpers.

Normalizes arbitrary input arrays to uint8 rasters, converts them to a
single intensity channel, and prepares axis-aligned crops of detected
regions for external embedding models.
"""

import os
import logging
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# Side length of the square crop handed to embedding models.
EMBEDDING_SIZE = int(os.environ.get("EMBEDDING_SIZE", "224"))


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is uint8 format."""
    if image_np.dtype != np.uint8:
        if image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = np.clip(image_np, 0, 255).astype(np.uint8)
    return image_np


def to_grayscale(image_np: np.ndarray) -> np.ndarray:
    """
    Convert an RGB (or already single-channel) image to intensity.

    Raises:
        ValueError: If the image is empty or not 2D/3-channel.
    """
    if image_np is None or image_np.size == 0:
        raise ValueError("Cannot convert an empty image to grayscale")

    image_np = normalize_image(image_np)
    if image_np.ndim == 2:
        return image_np
    if image_np.ndim == 3 and image_np.shape[2] == 1:
        return image_np[:, :, 0]
    if image_np.ndim == 3 and image_np.shape[2] == 3:
        return cv2.cvtColor(image_np, cv2.COLOR_RGB2GRAY)
    raise ValueError(f"Unsupported image shape {image_np.shape}")


def prep_embedding_image(image_np: np.ndarray,
                         region,
                         output_size: int = EMBEDDING_SIZE) -> Optional[np.ndarray]:
    """
    Rotate a region upright and crop it to a fixed-size square.

    The frame is rotated about the region centroid so the primary axis
    becomes horizontal. The oriented box corners are carried through the
    same rotation, and their bounding rectangle (clipped to the frame)
    is cropped and resized.

    Args:
        image_np: RGB uint8 source frame.
        region: RegionDescriptor for the object.
        output_size: Side length of the returned square image.

    Returns:
        output_size x output_size image, or None when the crop would be
        degenerate.
    """
    if image_np is None or image_np.size == 0:
        return None
    if output_size <= 0 or region is None or region.area <= 0:
        return None

    image_np = normalize_image(image_np)
    h, w = image_np.shape[:2]

    angle_deg = float(np.degrees(region.theta))
    rotation = cv2.getRotationMatrix2D(
        (float(region.centroid[0]), float(region.centroid[1])), angle_deg, 1.0
    )
    rotated = cv2.warpAffine(image_np, rotation, (w, h),
                             flags=cv2.INTER_LINEAR,
                             borderMode=cv2.BORDER_REPLICATE)

    corners = region.box.corners()
    ones = np.ones((corners.shape[0], 1), dtype=np.float64)
    rotated_corners = np.hstack([corners, ones]) @ rotation.T

    x0 = max(0, int(np.floor(rotated_corners[:, 0].min())))
    y0 = max(0, int(np.floor(rotated_corners[:, 1].min())))
    x1 = min(w, int(np.ceil(rotated_corners[:, 0].max())))
    y1 = min(h, int(np.ceil(rotated_corners[:, 1].max())))

    if x1 - x0 <= 1 or y1 - y0 <= 1:
        logger.debug(f"Embedding crop degenerate for region {region.id}")
        return None

    cropped = rotated[y0:y1, x0:x1]
    return cv2.resize(cropped, (output_size, output_size),
                      interpolation=cv2.INTER_LINEAR)
