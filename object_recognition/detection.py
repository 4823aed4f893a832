"""
Single-object detection pipeline.

Chains the vision stages for one frame:
    1. Binarize with a 2-means adaptive threshold
    2. Clean the mask with erosions then dilations
    3. Label connected components
    4. Describe every region above the minimum area
    5. Select the best candidate and crop it from the frame

Each frame is processed independently. An empty frame is a caller error;
a frame with no usable region is a normal "no detection" result.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .labeling import LABEL_CONNECTIVITY, label_components
from .morphology import clean_mask
from .preprocessing import normalize_image
from .region_features import RegionDescriptor, analyze_regions
from .selection import select_best_region
from .thresholding import binarize

logger = logging.getLogger(__name__)

# Minimum region area: max(MIN_REGION_AREA, frame_area * MIN_REGION_FRACTION)
MIN_REGION_AREA = int(os.environ.get("MIN_REGION_AREA", "2000"))
MIN_REGION_FRACTION = float(os.environ.get("MIN_REGION_FRACTION", str(1.0 / 300)))


@dataclass
class DetectionResult:
    """Everything one detection pass produced, intermediates included."""

    valid: bool = False
    thresholded: Optional[np.ndarray] = None
    cleaned: Optional[np.ndarray] = None
    label_map: Optional[np.ndarray] = None
    regions: List[RegionDescriptor] = field(default_factory=list)
    best_region: Optional[RegionDescriptor] = None
    bbox: Optional[Tuple[int, int, int, int]] = None
    crop: Optional[np.ndarray] = None
    score: float = 0.0
    peak_distance: int = 0


def default_min_area(frame_area: int) -> int:
    """Scale the area floor with the frame (roughly 0.33% of it)."""
    return max(MIN_REGION_AREA, int(frame_area * MIN_REGION_FRACTION))


def detect_object(image_np: np.ndarray,
                  min_area: Optional[int] = None,
                  connectivity: int = LABEL_CONNECTIVITY,
                  **clean_kwargs) -> DetectionResult:
    """
    Find the single foreground object in a frame.

    Args:
        image_np: RGB uint8 frame.
        min_area: Minimum region size in pixels. Defaults to
                  default_min_area() of the frame.
        connectivity: 4 or 8 for component labeling.
        **clean_kwargs: Overrides for clean_mask() (k_size, erode_steps,
                        dilate_steps, four_way).

    Returns:
        DetectionResult; check .valid before using the region or crop.

    Raises:
        ValueError: If the frame is empty.
    """
    if image_np is None or image_np.size == 0:
        raise ValueError("Cannot detect objects in an empty image")

    image_np = normalize_image(image_np)
    h, w = image_np.shape[:2]
    if min_area is None:
        min_area = default_min_area(h * w)

    thresholded = binarize(image_np)
    cleaned = clean_mask(thresholded, **clean_kwargs)
    label_map = label_components(cleaned, connectivity=connectivity)

    regions = analyze_regions(label_map, min_area=min_area)
    regions.sort(key=lambda r: r.area, reverse=True)

    result = DetectionResult(
        thresholded=thresholded,
        cleaned=cleaned,
        label_map=label_map,
        regions=regions,
    )

    if not regions:
        logger.debug(f"No regions above {min_area} px")
        return result

    selection = select_best_region(regions, label_map, image_np)
    if selection is None:
        return result

    result.best_region = selection.region
    result.bbox = selection.bbox
    result.crop = selection.crop
    result.score = selection.score
    result.peak_distance = selection.peak_distance
    result.valid = selection.crop is not None and selection.crop.size > 0

    logger.debug(
        f"Best region {selection.region.id}: area={selection.region.area} "
        f"peak={selection.peak_distance} of {len(regions)} regions"
    )
    return result


def annotate_detection(image_np: np.ndarray,
                       result: DetectionResult,
                       show_axes: bool = False) -> np.ndarray:
    """
    Draw a detection result onto a copy of the frame.

    Draws the three largest candidate boxes, the selected box with its
    centroid and a summary caption. With show_axes, every region's
    oriented box and primary axis are drawn as well.

    Args:
        image_np: RGB uint8 frame the result came from.
        result: Output of detect_object().
        show_axes: Also draw oriented boxes and principal axes.

    Returns:
        Annotated RGB image.
    """
    canvas = normalize_image(image_np).copy()

    for region in result.regions[:3]:
        x, y, w, h = region.bbox
        cv2.rectangle(canvas, (x, y), (x + w - 1, y + h - 1),
                      (0, 180, 255), 1, cv2.LINE_AA)

    if show_axes:
        for region in result.regions:
            corners = np.round(region.box.corners()).astype(np.int32)
            cv2.polylines(canvas, [corners], True, (255, 255, 0), 2, cv2.LINE_AA)

            cx, cy = region.centroid
            p1 = (int(round(cx + region.e1[0] * region.min_e1)),
                  int(round(cy + region.e1[1] * region.min_e1)))
            p2 = (int(round(cx + region.e1[0] * region.max_e1)),
                  int(round(cy + region.e1[1] * region.max_e1)))
            cv2.line(canvas, p1, p2, (255, 0, 0), 2, cv2.LINE_AA)

    best = result.best_region
    if result.valid and best is not None:
        x, y, w, h = result.bbox
        cv2.rectangle(canvas, (x, y), (x + w - 1, y + h - 1),
                      (0, 255, 0), 2, cv2.LINE_AA)
        center = (int(round(best.centroid[0])), int(round(best.centroid[1])))
        cv2.circle(canvas, center, 3, (255, 255, 0), -1, cv2.LINE_AA)
        caption = (f"best area={best.area} peak={result.peak_distance} "
                   f"regions={len(result.regions)}")
        cv2.putText(canvas, caption, (x, max(20, y - 10)),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 0), 1, cv2.LINE_AA)

    return canvas
