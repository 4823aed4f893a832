"""
Feature extractors.

Two families produce vectors for the matcher:
    baseline   the 9-d shape vector of the detected region
    cnn        an external embedding model, fed an upright fixed-size
               crop of the region; the model itself is an injected
               callable image -> vector
"""

import logging
from enum import Enum
from typing import Callable, Optional, Sequence, Union

import numpy as np

from .preprocessing import EMBEDDING_SIZE, prep_embedding_image
from .region_features import RegionDescriptor, shape_vector

logger = logging.getLogger(__name__)

EmbeddingFn = Callable[[np.ndarray], Optional[Sequence[float]]]


class ExtractorType(str, Enum):
    BASELINE = "baseline"
    CNN = "cnn"


def parse_extractor(extractor: Union[str, ExtractorType]) -> ExtractorType:
    """
    Resolve an extractor name (case-insensitive) or ExtractorType.

    Raises:
        ValueError: For an unknown extractor name.
    """
    if isinstance(extractor, ExtractorType):
        return extractor
    try:
        return ExtractorType(str(extractor).strip().lower())
    except ValueError:
        known = ", ".join(e.value for e in ExtractorType)
        raise ValueError(f"Unknown extractor '{extractor}' (expected one of: {known})")


def extract_embedding(image_np: np.ndarray,
                      region: RegionDescriptor,
                      embedding_fn: EmbeddingFn,
                      output_size: int = EMBEDDING_SIZE) -> Optional[np.ndarray]:
    """
    Run the external embedding model on an upright crop of a region.

    Returns:
        1-d finite float64 vector, or None if cropping or the model failed.
    """
    prepped = prep_embedding_image(image_np, region, output_size)
    if prepped is None:
        logger.warning(f"Embedding crop failed for region {region.id}")
        return None

    try:
        vector = embedding_fn(prepped)
    except Exception as e:
        logger.error(f"Embedding extraction failed: {e}")
        return None

    if vector is None:
        return None
    vector = np.asarray(vector, dtype=np.float64).ravel()
    if vector.size == 0:
        return None
    if not np.all(np.isfinite(vector)):
        logger.warning(f"Embedding for region {region.id} has non-finite values")
        return None
    return vector


def extract_features(extractor: Union[str, ExtractorType],
                     image_np: np.ndarray,
                     region: RegionDescriptor,
                     embedding_fn: Optional[EmbeddingFn] = None) -> Optional[np.ndarray]:
    """
    Produce a feature vector for a detected region.

    Args:
        extractor: Extractor name or ExtractorType.
        image_np: RGB frame the region was detected in.
        region: Detected region.
        embedding_fn: Model callable, required for the cnn extractor.

    Returns:
        Feature vector, or None when extraction failed.

    Raises:
        ValueError: For an unknown extractor, or cnn without a model.
    """
    extractor = parse_extractor(extractor)
    if extractor is ExtractorType.BASELINE:
        return shape_vector(region)

    if embedding_fn is None:
        raise ValueError("The cnn extractor requires an embedding function")
    return extract_embedding(image_np, region, embedding_fn)
