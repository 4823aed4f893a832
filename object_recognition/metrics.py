"""
Distance metrics for feature vectors.

Metric families are selected by a runtime tag (MetricType). Three have a
plain pairwise distance(a, b) function:
    ssd           sum of squared differences
    hist_ix       1 - histogram intersection (inputs already normalized)
    cosine        1 - cosine similarity
The fourth, standardized, is Euclidean distance after scaling every
dimension by the inverse of its database-wide standard deviation, so its
pairwise form needs the weight vector bound in.

Pairwise functions return +inf when two vectors cannot be compared.
Lower is always more similar.
"""

import os
import logging
from enum import Enum
from functools import partial
from typing import Callable, Optional, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

# Dimensions whose std falls below this get weight 1.0 instead of 1/std.
STD_EPSILON = float(os.environ.get("STD_EPSILON", "1e-6"))

INCOMPARABLE = float("inf")


class MetricType(str, Enum):
    SSD = "ssd"
    HIST_INTERSECTION = "hist_ix"
    COSINE = "cosine"
    STANDARDIZED = "standardized"


def _pair(a, b) -> Tuple[np.ndarray, np.ndarray]:
    return (np.asarray(a, dtype=np.float64).ravel(),
            np.asarray(b, dtype=np.float64).ravel())


def ssd_distance(a, b) -> float:
    """Sum of squared differences."""
    a, b = _pair(a, b)
    if a.shape != b.shape:
        return INCOMPARABLE
    diff = a - b
    return float(np.dot(diff, diff))


def histogram_intersection_distance(a, b) -> float:
    """1 - sum(min(a_i, b_i)) for normalized histograms."""
    a, b = _pair(a, b)
    if a.shape != b.shape:
        return INCOMPARABLE
    return float(1.0 - np.minimum(a, b).sum())


def cosine_distance(a, b) -> float:
    """1 - cos(angle); a zero-norm input has no angle and is incomparable."""
    a, b = _pair(a, b)
    if a.shape != b.shape:
        return INCOMPARABLE
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return INCOMPARABLE
    return float(1.0 - np.dot(a, b) / (norm_a * norm_b))


def standardized_distance(a, b, inv_std) -> float:
    """sqrt(sum(((a_i - b_i) * inv_std_i)^2))."""
    a, b = _pair(a, b)
    inv_std = np.asarray(inv_std, dtype=np.float64).ravel()
    if a.shape != b.shape or a.shape != inv_std.shape:
        return INCOMPARABLE
    scaled = (a - b) * inv_std
    return float(np.sqrt(np.dot(scaled, scaled)))


def standardization_weights(matrix: np.ndarray,
                            epsilon: float = STD_EPSILON
                            ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Per-dimension statistics over the rows of a matrix.

    Returns:
        Tuple of (mean, std, inv_std). inv_std is 1/std, clamped to 1.0
        where std < epsilon.
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    mean = matrix.mean(axis=0)
    std = matrix.std(axis=0)
    inv_std = np.ones_like(std)
    spread = std >= epsilon
    inv_std[spread] = 1.0 / std[spread]
    return mean, std, inv_std


PAIRWISE_METRICS = {
    MetricType.SSD: ssd_distance,
    MetricType.HIST_INTERSECTION: histogram_intersection_distance,
    MetricType.COSINE: cosine_distance,
}


def parse_metric(metric: Union[str, MetricType]) -> MetricType:
    """
    Resolve a metric name (case-insensitive) or MetricType.

    Raises:
        ValueError: For an unknown metric name.
    """
    if isinstance(metric, MetricType):
        return metric
    try:
        return MetricType(str(metric).strip().lower())
    except ValueError:
        known = ", ".join(m.value for m in MetricType)
        raise ValueError(f"Unknown metric '{metric}' (expected one of: {known})")


def get_metric(metric: Union[str, MetricType],
               inv_std: Optional[np.ndarray] = None) -> Callable[..., float]:
    """
    Return the pairwise distance function for a metric.

    Args:
        metric: Metric name or MetricType.
        inv_std: Per-dimension weights, required for the standardized family.

    Raises:
        ValueError: For an unknown metric, or standardized without weights.
    """
    metric = parse_metric(metric)
    if metric is MetricType.STANDARDIZED:
        if inv_std is None:
            raise ValueError("Standardized metric needs per-dimension weights")
        return partial(standardized_distance, inv_std=inv_std)
    return PAIRWISE_METRICS[metric]
