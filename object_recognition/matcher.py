"""
Nearest-neighbor matching of a query vector against a feature store.

Pipeline:
    1. Resolve the store through the freshness-checked cache
    2. Keep only rows with the query's dimensionality
    3. Compute a distance to each row with the selected metric
    4. Drop non-finite distances and return the closest label(s)

The ssd and standardized families use a FAISS flat L2 search over the
cached rows (standardized rows and query are pre-scaled by the inverse
per-dimension std) to shortlist candidates. FAISS works in float32, so
every shortlisted row is re-scored in float64 before ranking. The other
families evaluate their pairwise function row by row.
"""

import os
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

import numpy as np

from .feature_db import DimensionGroup, FeatureDatabaseCache, get_default_cache
from .metrics import MetricType, get_metric, parse_metric

logger = logging.getLogger(__name__)

# Above this magnitude squared distances may overflow float32; such
# groups are scored exactly without FAISS.
FLOAT32_SAFE_MAGNITUDE = float(os.environ.get("FLOAT32_SAFE_MAGNITUDE", "1e18"))

FLOAT32_EPS = float(np.finfo(np.float32).eps)


@dataclass(frozen=True)
class MatchResult:
    label: str
    distance: float


def _float32_slack(dim: int, magnitude: float) -> float:
    """Upper bound on the float32 error of one squared L2 distance."""
    return 32.0 * dim * (dim + 1) * FLOAT32_EPS * magnitude * magnitude


def _exact_squared(data: np.ndarray, query: np.ndarray, rows: np.ndarray) -> np.ndarray:
    diff = data[rows] - query
    return np.einsum("ij,ij->i", diff, diff)


def _shortlist(group: DimensionGroup,
               data: np.ndarray,
               query: np.ndarray,
               standardized: bool,
               keep: int) -> np.ndarray:
    """
    Rows that may rank among the first `keep` once scored exactly.

    A row whose float32 distance exceeds the keep-th smallest by more
    than twice the error bound cannot beat it in float64. Falls back to
    every row when the data is too large for float32.
    """
    n = len(group)
    every_row = np.arange(n)
    magnitude = max(float(np.abs(data).max()), float(np.abs(query).max()))
    if magnitude > FLOAT32_SAFE_MAGNITUDE:
        return every_row

    index = group.l2_index(standardized=standardized)
    q = np.ascontiguousarray(query.reshape(1, -1), dtype=np.float32)
    approx, ids = index.search(q, n)
    approx, ids = approx[0], ids[0]
    if np.any(ids < 0) or not np.all(np.isfinite(approx)):
        return every_row

    cutoff = approx[keep - 1] + 2.0 * _float32_slack(data.shape[1], magnitude)
    return np.sort(ids[approx <= cutoff])


def _flat_l2_distances(group: DimensionGroup,
                       query: np.ndarray,
                       standardized: bool,
                       top_n: Optional[int] = None) -> np.ndarray:
    """
    Distances from the query to every row of the group, in row order.

    With top_n, only rows that can still rank within the first top_n
    are scored; the rest are left at inf.
    """
    data = group.search_space(standardized=standardized)
    if standardized:
        query = query * group.standardization()[2]

    n = len(group)
    keep = n if top_n is None else min(max(top_n, 1), n)
    rows = _shortlist(group, data, query, standardized, keep)

    distances = np.full(n, np.inf, dtype=np.float64)
    distances[rows] = _exact_squared(data, query, rows)
    if standardized:
        distances = np.sqrt(distances)
    return distances


def compute_distances(query: np.ndarray,
                      group: DimensionGroup,
                      metric: MetricType,
                      top_n: Optional[int] = None) -> np.ndarray:
    """
    Distance from the query to every row of a dimension group.

    For the FAISS-backed families, rows that cannot rank within top_n
    are reported as inf.
    """
    if metric is MetricType.SSD:
        return _flat_l2_distances(group, query, standardized=False, top_n=top_n)
    if metric is MetricType.STANDARDIZED:
        return _flat_l2_distances(group, query, standardized=True, top_n=top_n)

    distance = get_metric(metric)
    return np.array([distance(query, row) for row in group.matrix],
                    dtype=np.float64)



def rank_matches(query,
                 db_path: str,
                 metric: Union[str, MetricType] = MetricType.SSD,
                 top_n: int = 1,
                 cache: Optional[FeatureDatabaseCache] = None) -> List[MatchResult]:
    """
    Rank the closest comparable rows of a store.

    Args:
        query: Query feature vector.
        db_path: Path to the CSV feature store.
        metric: Metric name or MetricType.
        top_n: Maximum number of results.
        cache: Cache to resolve the store through; defaults to the
               process-wide cache.

    Returns:
        Up to top_n MatchResults, ascending by distance. Empty when the
        store is missing/empty or no row yields a finite distance.

    Raises:
        ValueError: For an empty query or unknown metric.
    """
    metric = parse_metric(metric)
    query = np.asarray(query, dtype=np.float64).ravel()
    if query.size == 0:
        raise ValueError("Cannot match an empty query vector")

    cache = cache or get_default_cache()
    database = cache.load(db_path)
    if database is None:
        logger.warning(f"No feature database available at {db_path}")
        return []

    group = database.group(query.size)
    if group is None:
        logger.warning(
            f"No {query.size}-d rows in {db_path} "
            f"(available: {database.dimensions})"
        )
        return []

    distances = compute_distances(query, group, metric, top_n=max(top_n, 1))
    finite = np.flatnonzero(np.isfinite(distances))
    if finite.size == 0:
        logger.info(f"No finite {metric.value} distances in {db_path}")
        return []

    order = finite[np.argsort(distances[finite], kind="stable")]
    results = [MatchResult(label=group.labels[i], distance=float(distances[i]))
               for i in order[:max(top_n, 1)]]

    logger.debug(
        f"Scored {len(finite)}/{len(group)} rows with {metric.value}: "
        f"best={results[0].label} ({results[0].distance:.4f})"
    )
    return results


def match(query,
          db_path: str,
          metric: Union[str, MetricType] = MetricType.SSD,
          cache: Optional[FeatureDatabaseCache] = None) -> Optional[MatchResult]:
    """
    Closest label in a store, or None for "no match".

    See rank_matches() for arguments.
    """
    results = rank_matches(query, db_path, metric=metric, top_n=1, cache=cache)
    return results[0] if results else None
