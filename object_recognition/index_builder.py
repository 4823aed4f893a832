"""
Batch feature database construction.

Processes a directory of training photographs, one object per image,
and writes one store row per usable image:
    - the label comes from the filename ('mug_03.png' -> 'mug')
    - the vector comes from the chosen extractor run on the best region

Images that cannot be read, have no detectable object, or fail
extraction are skipped and counted.
"""

import os
import logging
from typing import List, Optional, Union

import cv2

from .detection import detect_object
from .extractors import EmbeddingFn, ExtractorType, extract_features, parse_extractor
from .feature_db import append_feature_row, clear_feature_store, label_from_filename

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.ppm', '.tif', '.tiff', '.bmp'}


def list_images(image_dir: str) -> List[str]:
    """Sorted image filenames (not paths) in a directory."""
    return sorted(
        f for f in os.listdir(image_dir)
        if os.path.splitext(f)[1].lower() in IMAGE_EXTENSIONS
    )


def build_feature_database(image_dir: str,
                           output_path: str,
                           extractor: Union[str, ExtractorType] = ExtractorType.BASELINE,
                           embedding_fn: Optional[EmbeddingFn] = None,
                           min_area: Optional[int] = None) -> dict:
    """
    Build a feature store from a directory of labeled images.

    The output store is truncated first.

    Args:
        image_dir: Directory containing training images.
        output_path: CSV store to write.
        extractor: Extractor name or ExtractorType.
        embedding_fn: Model callable, required for the cnn extractor.
        min_area: Override for the detector's minimum region area.

    Returns:
        Dict with 'success', 'processed', 'skipped', 'errors',
        'dimensions' and 'output_path'; 'error' on failure.

    Raises:
        ValueError: For an unknown extractor, or cnn without a model.
    """
    extractor = parse_extractor(extractor)
    if extractor is ExtractorType.CNN and embedding_fn is None:
        raise ValueError("The cnn extractor requires an embedding function")

    if not os.path.isdir(image_dir):
        logger.error(f"Image directory not found: {image_dir}")
        return {"success": False, "error": f"Not a directory: {image_dir}"}

    filenames = list_images(image_dir)
    clear_feature_store(output_path)

    processed = 0
    skipped = 0
    errors = 0
    dimensions = set()

    logger.info(
        f"Building {extractor.value} features from {len(filenames)} images "
        f"in {image_dir}"
    )

    for i, filename in enumerate(filenames):
        filepath = os.path.join(image_dir, filename)

        try:
            image = cv2.imread(filepath)
            if image is None:
                logger.warning(f"Could not read: {filename}")
                errors += 1
                continue

            image_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

            detection = detect_object(image_rgb, min_area=min_area)
            if not detection.valid:
                logger.warning(f"No valid region in {filename}")
                skipped += 1
                continue

            vector = extract_features(extractor, image_rgb,
                                      detection.best_region, embedding_fn)
            if vector is None:
                logger.warning(f"Extraction failed for {filename}")
                skipped += 1
                continue

            append_feature_row(output_path, label_from_filename(filename), vector)
            dimensions.add(int(vector.size))
            processed += 1

            if (i + 1) % 100 == 0:
                logger.info(f"Processed {i + 1}/{len(filenames)} images")

        except (cv2.error, ValueError, OSError) as e:
            logger.warning(f"Failed to process {filename}: {e}")
            errors += 1

    summary = {
        "success": processed > 0,
        "processed": processed,
        "skipped": skipped,
        "errors": errors,
        "dimensions": sorted(dimensions),
        "output_path": output_path,
    }
    if processed == 0:
        summary["error"] = "No valid images processed"

    logger.info(
        f"Feature store built: {processed} rows, {skipped} skipped, "
        f"{errors} errors -> {output_path}"
    )
    return summary
