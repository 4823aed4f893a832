"""
Per-region geometric and moment feature extraction.

For every labeled blob that is large enough, computes:
    - area and centroid from the raw pixel moments
    - central second moments mu20, mu02, mu11
    - the principal-axis angle and its orthonormal frame (e1, e2)
    - signed pixel extents along both axes and the oriented bounding box
    - fill ratio and aspect ratio of that box
    - 7 log-scaled Hu invariants

The 9-dimensional shape vector used for matching is
    [fill_ratio, aspect_ratio, hu0 .. hu6]
"""

import os
import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# Shape vector dimensionality: 2 geometric ratios + 7 Hu invariants
SHAPE_DIM = 9

# Floor for the aspect ratio denominator
ASPECT_EPSILON = float(os.environ.get("ASPECT_EPSILON", "1e-6"))


@dataclass(frozen=True)
class OrientedBox:
    """Rotated rectangle; width runs along e1, angle in radians."""

    center: Tuple[float, float]
    width: float
    height: float
    angle: float

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_rotated_rect(self):
        """OpenCV RotatedRect tuple ((cx, cy), (w, h), degrees)."""
        return (tuple(self.center), (self.width, self.height),
                float(np.degrees(self.angle)))

    def corners(self) -> np.ndarray:
        """4x2 array of corner points."""
        return cv2.boxPoints(self.to_rotated_rect()).astype(np.float64)


@dataclass(frozen=True)
class RegionDescriptor:
    """Immutable per-blob features produced by analyze_regions()."""

    id: int
    area: int
    centroid: Tuple[float, float]
    mu20: float
    mu02: float
    mu11: float
    theta: float
    e1: Tuple[float, float]
    e2: Tuple[float, float]
    min_e1: float
    max_e1: float
    min_e2: float
    max_e2: float
    box: OrientedBox
    bbox: Tuple[int, int, int, int]
    fill_ratio: float
    aspect_ratio: float
    hu: Tuple[float, ...]

    def shape_vector(self) -> np.ndarray:
        return shape_vector(self)


def primary_axis_angle(mu20: float, mu02: float, mu11: float) -> float:
    """theta = 0.5 * atan2(2 * mu11, mu20 - mu02), in radians."""
    return 0.5 * math.atan2(2.0 * mu11, mu20 - mu02)


def log_scale_hu(hu_moments: np.ndarray) -> np.ndarray:
    """
    Compress Hu invariants to comparable magnitudes.

    Each nonzero h becomes -sign(h) * log10(|h|); zeros stay zero.
    """
    return np.array([
        -np.sign(h) * np.log10(abs(h)) if h != 0 else 0.0
        for h in np.asarray(hu_moments, dtype=np.float64).ravel()
    ], dtype=np.float64)


def hu_invariants(region_mask: np.ndarray) -> np.ndarray:
    """7 log-scaled Hu invariants of a binary mask."""
    moments = cv2.moments(region_mask.astype(np.uint8), binaryImage=True)
    return log_scale_hu(cv2.HuMoments(moments).flatten())


def describe_region(region_id: int,
                    xs: np.ndarray,
                    ys: np.ndarray) -> Optional[RegionDescriptor]:
    """
    Build a RegionDescriptor from a blob's pixel coordinates.

    Extents are measured on pixel footprints: the pixel-center
    projections are widened by the half-width of a unit pixel along each
    axis, so the oriented box encloses every pixel and fill ratio stays
    at or below 1.

    Returns:
        The descriptor, or None for degenerate geometry.
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)

    m00 = float(xs.size)
    if m00 < 1e-9:
        return None
    cx = float(xs.sum()) / m00
    cy = float(ys.sum()) / m00

    dx = xs - cx
    dy = ys - cy
    mu20 = float(np.dot(dx, dx))
    mu02 = float(np.dot(dy, dy))
    mu11 = float(np.dot(dx, dy))

    theta = primary_axis_angle(mu20, mu02, mu11)
    cos_t, sin_t = math.cos(theta), math.sin(theta)
    e1 = (cos_t, sin_t)
    e2 = (-sin_t, cos_t)

    u1 = dx * e1[0] + dy * e1[1]
    u2 = dx * e2[0] + dy * e2[1]
    min_e1, max_e1 = float(u1.min()), float(u1.max())
    min_e2, max_e2 = float(u2.min()), float(u2.max())

    half_pixel = 0.5 * (abs(cos_t) + abs(sin_t))
    width = max(1.0, max_e1 - min_e1 + 2.0 * half_pixel)
    height = max(1.0, max_e2 - min_e2 + 2.0 * half_pixel)
    if not (width > 0 and height > 0 and math.isfinite(width * height)):
        return None

    mid_e1 = 0.5 * (min_e1 + max_e1)
    mid_e2 = 0.5 * (min_e2 + max_e2)
    center = (cx + e1[0] * mid_e1 + e2[0] * mid_e2,
              cy + e1[1] * mid_e1 + e2[1] * mid_e2)
    box = OrientedBox(center=center, width=width, height=height, angle=theta)

    fill_ratio = m00 / (width * height)
    aspect_ratio = max(width, height) / max(min(width, height), ASPECT_EPSILON)

    x0, y0 = int(xs.min()), int(ys.min())
    bw, bh = int(xs.max()) - x0 + 1, int(ys.max()) - y0 + 1
    patch = np.zeros((bh, bw), dtype=np.uint8)
    patch[ys.astype(np.intp) - y0, xs.astype(np.intp) - x0] = 1
    hu = hu_invariants(patch)

    return RegionDescriptor(
        id=int(region_id),
        area=int(m00),
        centroid=(cx, cy),
        mu20=mu20, mu02=mu02, mu11=mu11,
        theta=theta,
        e1=e1, e2=e2,
        min_e1=min_e1, max_e1=max_e1,
        min_e2=min_e2, max_e2=max_e2,
        box=box,
        bbox=(x0, y0, bw, bh),
        fill_ratio=fill_ratio,
        aspect_ratio=aspect_ratio,
        hu=tuple(float(h) for h in hu),
    )


def analyze_regions(label_map: np.ndarray,
                    min_area: int = 20) -> List[RegionDescriptor]:
    """
    Describe every labeled region with at least min_area pixels.

    Args:
        label_map: Non-negative int LabelMap, 0 = background.
        min_area: Minimum pixel count for a region to be described.

    Returns:
        Descriptors ordered by region id. Too-small and degenerate
        regions are dropped.

    Raises:
        ValueError: For a non-2D label map.
    """
    if label_map is None or label_map.ndim != 2:
        raise ValueError("Expected a 2D label map")
    if label_map.size == 0:
        return []

    flat = label_map.ravel().astype(np.intp)
    if flat.max() < 1:
        return []

    h, w = label_map.shape
    counts = np.bincount(flat)
    offsets = np.concatenate(([0], np.cumsum(counts)))
    order = np.argsort(flat, kind="stable")

    regions = []
    for region_id in np.flatnonzero(counts):
        if region_id == 0:
            continue
        if counts[region_id] < min_area:
            continue

        pixels = order[offsets[region_id]:offsets[region_id + 1]]
        ys, xs = np.divmod(pixels, w)
        region = describe_region(int(region_id), xs, ys)
        if region is None:
            logger.debug(f"Skipping degenerate region {region_id}")
            continue
        regions.append(region)

    logger.debug(
        f"Described {len(regions)} of {int(np.count_nonzero(counts[1:]))} "
        f"regions (min_area={min_area})"
    )
    return regions


def shape_vector(region: RegionDescriptor) -> np.ndarray:
    """[fill_ratio, aspect_ratio, hu0..hu6] as a float64 vector."""
    return np.array([region.fill_ratio, region.aspect_ratio, *region.hu],
                    dtype=np.float64)
