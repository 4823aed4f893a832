"""
Best-region selection among multiple detected blobs.

Only the largest few regions are scored. Each score mixes two signals:
    - area as a fraction of the frame (big objects are usually the subject)
    - the deepest interior point of the blob, from a grassfire distance
      map over its bounding crop, normalized by the crop's longer side
      (solid, compact blobs beat thin clutter of similar area)

The first candidate with the highest score wins; later candidates must
strictly beat it.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from .region_features import RegionDescriptor

logger = logging.getLogger(__name__)

# Candidate pre-filter and score weights. Weights should sum to 1.0.
SELECT_TOP_K = int(os.environ.get("SELECT_TOP_K", "5"))
SELECT_AREA_WEIGHT = float(os.environ.get("SELECT_AREA_WEIGHT", "0.8"))
SELECT_DIST_WEIGHT = float(os.environ.get("SELECT_DIST_WEIGHT", "0.2"))


@dataclass(frozen=True)
class Selection:
    """The chosen region with its score and crop of the source image."""

    region: RegionDescriptor
    score: float
    peak_distance: int
    bbox: Tuple[int, int, int, int]
    crop: Optional[np.ndarray]


def grassfire(mask: np.ndarray) -> np.ndarray:
    """
    Two-pass grassfire distance-to-boundary transform.

    Each foreground pixel gets its city-block distance to the nearest
    background pixel, which is what the classic forward pass
    (min(up, left) + 1) and backward pass (min(down, right) + 1)
    compute. OpenCV's L1 chamfer transform with a 3x3 mask runs the same
    two passes natively. The mask is treated as surrounded by
    background. This is not a Euclidean transform.

    Args:
        mask: 2D array, nonzero = foreground.

    Returns:
        int32 distance map, 0 on background.
    """
    fg = np.pad((np.asarray(mask) > 0).astype(np.uint8), 1,
                mode="constant", constant_values=0)
    dist = cv2.distanceTransform(fg, cv2.DIST_L1, 3)
    return np.rint(dist[1:-1, 1:-1]).astype(np.int32)


def score_region(region: RegionDescriptor,
                 label_map: np.ndarray,
                 area_weight: float = SELECT_AREA_WEIGHT,
                 dist_weight: float = SELECT_DIST_WEIGHT) -> Tuple[float, int]:
    """
    Score one candidate region.

    Returns:
        Tuple of (score, peak grassfire distance inside the region).
    """
    frame_area = max(label_map.shape[0] * label_map.shape[1], 1)
    x, y, w, h = region.bbox
    crop = label_map[y:y + h, x:x + w] == region.id
    if crop.size == 0:
        return -1.0, 0

    peak = int(grassfire(crop).max())
    area_norm = region.area / float(frame_area)
    dist_norm = peak / float(max(w, h))
    return area_weight * area_norm + dist_weight * dist_norm, peak


def select_best_region(regions: Sequence[RegionDescriptor],
                       label_map: np.ndarray,
                       image_np: Optional[np.ndarray] = None,
                       top_k: int = SELECT_TOP_K,
                       area_weight: float = SELECT_AREA_WEIGHT,
                       dist_weight: float = SELECT_DIST_WEIGHT) -> Optional[Selection]:
    """
    Pick the region that best represents "the object".

    Args:
        regions: Candidate descriptors (any order).
        label_map: LabelMap the descriptors were computed from.
        image_np: Optional source image to crop.
        top_k: Number of largest regions to score.
        area_weight: Weight of the area fraction.
        dist_weight: Weight of the normalized interior peak.

    Returns:
        Selection, or None when there are no candidates.
    """
    if not regions:
        return None

    candidates = sorted(regions, key=lambda r: r.area, reverse=True)[:max(top_k, 1)]

    best = None
    best_score = -1.0
    best_peak = 0
    for region in candidates:
        score, peak = score_region(region, label_map, area_weight, dist_weight)
        logger.debug(
            f"Region {region.id}: area={region.area} peak={peak} score={score:.4f}"
        )
        if score > best_score:
            best, best_score, best_peak = region, score, peak

    if best is None:
        return None

    x, y, w, h = best.bbox
    crop = None
    if image_np is not None:
        crop = image_np[y:y + h, x:x + w].copy()

    return Selection(region=best, score=best_score, peak_distance=best_peak,
                     bbox=best.bbox, crop=crop)
