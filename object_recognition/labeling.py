"""
Connected-component labeling with a two-pass union-find.

First pass walks the mask in raster order, one row at a time. Each
horizontal run of foreground pixels takes the provisional label of a
labeled neighbor in the row above (left neighbors inside a run share its
label by construction) or a fresh label when it has none. When a run
touches runs with different labels, the labels are merged in the
union-find forest. Second pass flattens every provisional label to its
root and, optionally, renumbers roots densely to 1..N.
"""

import os
import logging
from typing import List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

LABEL_CONNECTIVITY = int(os.environ.get("LABEL_CONNECTIVITY", "8"))


class UnionFind:
    """
    Disjoint-set forest stored as a flat parent array.

    Index 0 is reserved for background and is always its own root.
    Unions attach the larger root to the smaller, so every root is the
    lowest label in its class.
    """

    def __init__(self):
        self.parent: List[int] = [0]

    def __len__(self) -> int:
        return len(self.parent)

    def make_set(self) -> int:
        label = len(self.parent)
        self.parent.append(label)
        return label

    def find(self, label: int) -> int:
        root = label
        while self.parent[root] != root:
            root = self.parent[root]

        # Path compression
        while self.parent[label] != root:
            nxt = self.parent[label]
            self.parent[label] = root
            label = nxt
        return root

    def union(self, a: int, b: int) -> int:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return root_a
        low, high = min(root_a, root_b), max(root_a, root_b)
        self.parent[high] = low
        return low

    def flatten(self) -> np.ndarray:
        """Lookup table mapping every label to its fully resolved root."""
        return np.array([self.find(i) for i in range(len(self.parent))],
                        dtype=np.int32)


def _row_runs(row: np.ndarray) -> List[Tuple[int, int]]:
    """Return [start, end) column spans of foreground runs in a boolean row."""
    padded = np.concatenate(([False], row, [False]))
    edges = np.flatnonzero(padded[1:] != padded[:-1])
    return list(zip(edges[::2].tolist(), edges[1::2].tolist()))


def label_components(mask: np.ndarray,
                     connectivity: int = LABEL_CONNECTIVITY,
                     dense: bool = True) -> np.ndarray:
    """
    Assign a unique positive id to every connected foreground blob.

    Args:
        mask: Single-channel mask, nonzero = foreground.
        connectivity: 4 or 8.
        dense: Renumber ids to a contiguous 1..N range so the region
               count equals the maximum label.

    Returns:
        int32 LabelMap, same size as the mask, 0 = background.

    Raises:
        ValueError: For a non-2D mask or unsupported connectivity.
    """
    if connectivity not in (4, 8):
        raise ValueError(f"Connectivity must be 4 or 8, got {connectivity}")
    if mask is None or mask.ndim != 2:
        raise ValueError("Expected a single-channel mask")

    fg = mask > 0
    h, w = fg.shape
    provisional = np.zeros((h, w), dtype=np.int32)
    forest = UnionFind()

    # Diagonal neighbors widen the span checked in the row above by one.
    reach = 1 if connectivity == 8 else 0
    prev_runs: List[Tuple[int, int, int]] = []

    for y in range(h):
        runs = []
        first = 0
        for start, end in _row_runs(fg[y]):
            lo, hi = start - reach, end + reach
            while first < len(prev_runs) and prev_runs[first][1] <= lo:
                first += 1

            label = 0
            k = first
            while k < len(prev_runs) and prev_runs[k][0] < hi:
                above = prev_runs[k][2]
                if label == 0:
                    label = above
                elif above != label:
                    forest.union(label, above)
                k += 1

            if label == 0:
                label = forest.make_set()

            provisional[y, start:end] = label
            runs.append((start, end, label))
        prev_runs = runs

    roots = forest.flatten()
    if dense:
        _, lut = np.unique(roots, return_inverse=True)
        lut = lut.reshape(-1).astype(np.int32)
    else:
        lut = roots

    labels = lut[provisional]
    logger.debug(
        f"Labeled {int(labels.max()) if labels.size else 0} components "
        f"({len(forest) - 1} provisional)"
    )
    return labels


def colorize_labels(label_map: np.ndarray,
                    seed: Optional[int] = None) -> np.ndarray:
    """
    Paint each region id a random color for inspection.

    Args:
        label_map: int LabelMap.
        seed: RNG seed; the same seed gives the same palette.

    Returns:
        uint8 RGB image, background black.
    """
    max_label = int(label_map.max()) if label_map.size else 0
    vis = np.zeros(label_map.shape + (3,), dtype=np.uint8)
    if max_label < 1:
        return vis

    rng = np.random.default_rng(seed)
    palette = rng.integers(40, 256, size=(max_label + 1, 3), dtype=np.uint8)
    palette[0] = 0
    return palette[np.clip(label_map, 0, max_label)]
