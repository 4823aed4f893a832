"""
On-disk feature store and its freshness-checked in-memory cache.

The store is a CSV file, one sample per row:
    label,value_0,value_1,...,value_{d-1}
Rows may have different lengths (one file can hold vectors from several
extractors); they are grouped by dimensionality on load. Malformed rows
are skipped, never fatal to the whole load.

FeatureDatabaseCache keeps one CachedDatabase per store path. A cached
copy is served only while the file's (mtime, size) fingerprint is
unchanged; otherwise the whole file is re-read first. Reloads build a new
immutable snapshot and swap it in under a lock, so concurrent readers
always see either the old or the new copy.
"""

import csv
import os
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import faiss
import numpy as np

from .metrics import STD_EPSILON, standardization_weights

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureEntry:
    label: str
    vector: np.ndarray


@dataclass(frozen=True)
class Fingerprint:
    """Modification time (ns) and byte size of a backing store."""

    mtime_ns: int
    size: int


class DimensionGroup:
    """
    All rows of one vector dimensionality, stacked for vectorized search.

    Standardization statistics and FAISS flat indexes are derived lazily
    and memoized; the rows themselves never change.
    """

    def __init__(self, labels: Sequence[str], matrix: np.ndarray):
        self.labels = list(labels)
        self.matrix = np.asarray(matrix, dtype=np.float64)
        self.dim = self.matrix.shape[1]
        self._stats = None
        self._spaces: Dict[bool, np.ndarray] = {}
        self._indexes: Dict[bool, faiss.Index] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self.labels)

    def standardization(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(mean, std, inv_std) over this group's rows."""
        with self._lock:
            if self._stats is None:
                self._stats = standardization_weights(self.matrix, STD_EPSILON)
            return self._stats

    def search_space(self, standardized: bool = False) -> np.ndarray:
        """float64 rows, pre-scaled by inv_std when standardized."""
        with self._lock:
            data = self._spaces.get(standardized)
            if data is None:
                data = self.matrix
                if standardized:
                    data = data * self.standardization()[2]
                self._spaces[standardized] = data
            return data

    def l2_index(self, standardized: bool = False) -> faiss.Index:
        """
        Flat L2 index over search_space() rows, stored as float32.

        FAISS returns squared L2 distances with float32 rounding, so its
        results are only good for shortlisting.
        """
        with self._lock:
            index = self._indexes.get(standardized)
            if index is None:
                data = self.search_space(standardized)
                index = faiss.IndexFlatL2(self.dim)
                index.add(np.ascontiguousarray(data, dtype=np.float32))
                self._indexes[standardized] = index
            return index


class CachedDatabase:
    """Immutable in-memory mirror of one feature store."""

    def __init__(self, path: str, fingerprint: Fingerprint,
                 entries: Sequence[FeatureEntry], skipped_rows: int = 0):
        self.path = path
        self.fingerprint = fingerprint
        self.entries = tuple(entries)
        self.skipped_rows = skipped_rows
        self.loaded = True

        by_dim: Dict[int, List[FeatureEntry]] = {}
        for entry in self.entries:
            by_dim.setdefault(entry.vector.size, []).append(entry)
        self.groups = {
            dim: DimensionGroup([e.label for e in rows],
                                np.vstack([e.vector for e in rows]))
            for dim, rows in by_dim.items()
        }

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def dimensions(self) -> List[int]:
        return sorted(self.groups)

    @property
    def labels(self) -> List[str]:
        return sorted({e.label for e in self.entries})

    def group(self, dim: int) -> Optional[DimensionGroup]:
        return self.groups.get(dim)


def store_fingerprint(path: str) -> Optional[Fingerprint]:
    """Current (mtime, size) of a store, or None if it cannot be stat'ed."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    return Fingerprint(mtime_ns=st.st_mtime_ns, size=st.st_size)


def parse_feature_row(row: Sequence[str]) -> Optional[FeatureEntry]:
    """Parse one CSV row, or None if it is malformed."""
    if len(row) < 2:
        return None
    label = row[0].strip()
    if not label:
        return None
    try:
        vector = np.array([float(v) for v in row[1:]], dtype=np.float64)
    except ValueError:
        return None
    if not np.all(np.isfinite(vector)):
        return None
    return FeatureEntry(label=label, vector=vector)


def read_feature_store(path: str) -> Tuple[List[FeatureEntry], int]:
    """
    Read every valid row from a store.

    Returns:
        Tuple of (entries, skipped_row_count).

    Raises:
        OSError: If the file cannot be opened.
    """
    entries = []
    skipped = 0
    with open(path, "rb") as f:
        for line_no, raw in enumerate(f, start=1):
            # Decoded and parsed per line: a bad line only skips itself.
            try:
                row = next(csv.reader([raw.decode("utf-8")]), [])
            except (UnicodeDecodeError, csv.Error) as e:
                skipped += 1
                logger.warning(f"Skipping unreadable row {line_no} in {path}: {e}")
                continue
            if not row or all(not cell.strip() for cell in row):
                continue
            entry = parse_feature_row(row)
            if entry is None:
                skipped += 1
                logger.warning(f"Skipping malformed row {line_no} in {path}")
                continue
            entries.append(entry)
    return entries, skipped


class FeatureDatabaseCache:
    """Process-wide map of store path -> CachedDatabase, reloaded when stale."""

    def __init__(self):
        self._databases: Dict[str, CachedDatabase] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._databases)

    def __contains__(self, path: str) -> bool:
        return os.path.abspath(path) in self._databases

    def load(self, path: str) -> Optional[CachedDatabase]:
        """
        Return a fresh in-memory copy of a store.

        Re-reads the file on first access or whenever its fingerprint
        changed since the cached copy was built.

        Returns:
            CachedDatabase, or None if the store is missing, unreadable
            or holds no valid rows.
        """
        key = os.path.abspath(path)
        fingerprint = store_fingerprint(key)
        if fingerprint is None:
            logger.warning(f"Feature store not found: {key}")
            return None

        with self._lock:
            cached = self._databases.get(key)
            if cached is not None and cached.fingerprint == fingerprint:
                return cached

            try:
                entries, skipped = read_feature_store(key)
            except OSError as e:
                logger.warning(f"Could not read feature store {key}: {e}")
                return None

            if not entries:
                logger.warning(f"Feature store is empty: {key}")
                return None

            database = CachedDatabase(key, fingerprint, entries, skipped)
            self._databases[key] = database

        action = "Reloaded" if cached is not None else "Loaded"
        logger.info(
            f"{action} feature store {key}: {len(entries)} rows, "
            f"dims={database.dimensions}, {skipped} skipped"
        )
        return database


_default_cache: Optional[FeatureDatabaseCache] = None
_default_cache_lock = threading.Lock()


def get_default_cache() -> FeatureDatabaseCache:
    """Lazily created cache shared by callers that do not pass their own."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = FeatureDatabaseCache()
        return _default_cache


def label_from_filename(path: str) -> str:
    """'data/mug_20240101.png' -> 'mug': basename, no extension, cut at '_'."""
    stem = os.path.splitext(os.path.basename(path))[0]
    return stem.split("_", 1)[0]


def store_path_for(data_dir: str, extractor) -> str:
    """Conventional store path for an extractor: <data_dir>/features_<type>.csv."""
    name = getattr(extractor, "value", extractor)
    return os.path.join(data_dir, f"features_{name}.csv")


def clear_feature_store(path: str) -> None:
    """Create or truncate a store."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8"):
        pass


def append_feature_row(path: str, label: str, vector) -> None:
    """
    Append one `label,v0,...` row with 4-decimal values.

    Raises:
        ValueError: For an empty label or an empty/non-finite vector.
    """
    label = label.strip()
    vector = np.asarray(vector, dtype=np.float64).ravel()
    if not label:
        raise ValueError("Feature rows need a non-empty label")
    if vector.size == 0 or not np.all(np.isfinite(vector)):
        raise ValueError("Feature rows need a non-empty, finite vector")

    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "a", newline="", encoding="utf-8") as f:
        csv.writer(f).writerow([label] + [f"{v:.4f}" for v in vector])
