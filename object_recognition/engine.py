"""
Object recognition engine.

Orchestrates one frame end to end:
    1. Detect the single foreground object
    2. For each enabled extractor, extract a vector from the region
    3. Match it against that extractor's feature store
    4. Reject matches farther than the extractor's unknown threshold

Each extractor is independent. If one fails (e.g., the embedding model
raises), the others still produce a prediction.

Enrollment runs the same detection and appends the sample's vectors to
every enabled extractor's store; the cache picks them up on the next
match because the store's fingerprint changes.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Union

import numpy as np

from .detection import DetectionResult, detect_object
from .extractors import EmbeddingFn, ExtractorType, extract_features, parse_extractor
from .feature_db import FeatureDatabaseCache, append_feature_row, get_default_cache, store_path_for
from .matcher import match
from .metrics import MetricType, parse_metric

logger = logging.getLogger(__name__)

# Unknown rejection: a match farther than this is reported as UNKNOWN_LABEL.
# Tune per extractor; the scales of the two feature spaces differ.
BASELINE_UNKNOWN_THRESHOLD = float(os.environ.get("BASELINE_UNKNOWN_THRESHOLD", "3.0"))
CNN_UNKNOWN_THRESHOLD = float(os.environ.get("CNN_UNKNOWN_THRESHOLD", "0.5"))
UNKNOWN_LABEL = os.environ.get("UNKNOWN_LABEL", "unknown")

DEFAULT_METRICS = {
    ExtractorType.BASELINE: MetricType.SSD,
    ExtractorType.CNN: MetricType.SSD,
}


@dataclass
class Prediction:
    extractor: ExtractorType
    label: str
    distance: float
    unknown: bool = False


@dataclass
class Recognition:
    """Detection plus one prediction per extractor that produced a match."""

    detection: DetectionResult
    predictions: Dict[ExtractorType, Prediction] = field(default_factory=dict)

    @property
    def best(self) -> Optional[Prediction]:
        """Baseline prediction if present, otherwise the embedding one."""
        for extractor in (ExtractorType.BASELINE, ExtractorType.CNN):
            if extractor in self.predictions:
                return self.predictions[extractor]
        return None


def sanitize_label(label: str) -> str:
    """Keep only characters that are safe in filenames and CSV cells."""
    return re.sub(r"[^A-Za-z0-9_-]", "", label)


class ObjectRecognizer:
    """
    Classifies frames and enrolls new samples against per-extractor stores.

    Stores live in data_dir as features_<extractor>.csv.
    """

    def __init__(self,
                 data_dir: str,
                 cache: Optional[FeatureDatabaseCache] = None,
                 embedding_fn: Optional[EmbeddingFn] = None,
                 extractors: Optional[Iterable[Union[str, ExtractorType]]] = None,
                 metrics: Optional[Dict[ExtractorType, Union[str, MetricType]]] = None,
                 reject_unknown: bool = True,
                 thresholds: Optional[Dict[ExtractorType, float]] = None,
                 min_area: Optional[int] = None):
        """
        Args:
            data_dir: Directory holding the feature stores.
            cache: Store cache; defaults to the process-wide one.
            embedding_fn: External model for the cnn extractor.
            extractors: Extractors to run. Defaults to baseline, plus cnn
                        when an embedding function is given.
            metrics: Per-extractor metric overrides.
            reject_unknown: Apply the unknown thresholds.
            thresholds: Per-extractor unknown threshold overrides.
            min_area: Override for the detector's minimum region area.
        """
        self.data_dir = data_dir
        self.cache = cache or get_default_cache()
        self.embedding_fn = embedding_fn
        self.min_area = min_area
        self.reject_unknown = reject_unknown

        if extractors is None:
            extractors = [ExtractorType.BASELINE]
            if embedding_fn is not None:
                extractors.append(ExtractorType.CNN)
        self.extractors = [parse_extractor(e) for e in extractors]
        if ExtractorType.CNN in self.extractors and embedding_fn is None:
            raise ValueError("The cnn extractor requires an embedding function")

        self.metrics = dict(DEFAULT_METRICS)
        for extractor, metric in (metrics or {}).items():
            self.metrics[parse_extractor(extractor)] = parse_metric(metric)

        self.thresholds = {
            ExtractorType.BASELINE: BASELINE_UNKNOWN_THRESHOLD,
            ExtractorType.CNN: CNN_UNKNOWN_THRESHOLD,
        }
        for extractor, threshold in (thresholds or {}).items():
            self.thresholds[parse_extractor(extractor)] = float(threshold)

    def store_path(self, extractor: Union[str, ExtractorType]) -> str:
        return store_path_for(self.data_dir, parse_extractor(extractor))

    def is_unknown(self, extractor: ExtractorType, distance: float) -> bool:
        """True when rejection is on and a finite distance exceeds the threshold."""
        if not self.reject_unknown or not np.isfinite(distance):
            return False
        return distance > self.thresholds[extractor]

    def _features(self, extractor: ExtractorType,
                  image_np: np.ndarray,
                  detection: DetectionResult) -> Optional[np.ndarray]:
        return extract_features(extractor, image_np, detection.best_region,
                                self.embedding_fn)

    def classify(self, image_np: np.ndarray) -> Recognition:
        """
        Detect and label the object in a frame.

        Args:
            image_np: RGB uint8 frame.

        Returns:
            Recognition; predictions is empty when nothing was detected
            or no extractor found a match.
        """
        detection = detect_object(image_np, min_area=self.min_area)
        recognition = Recognition(detection=detection)
        if not detection.valid:
            logger.debug("No detection, skipping classification")
            return recognition

        for extractor in self.extractors:
            vector = self._features(extractor, image_np, detection)
            if vector is None:
                logger.debug(f"{extractor.value}: no features")
                continue

            result = match(vector, self.store_path(extractor),
                           metric=self.metrics[extractor], cache=self.cache)
            if result is None:
                logger.debug(f"{extractor.value}: no match")
                continue

            unknown = self.is_unknown(extractor, result.distance)
            recognition.predictions[extractor] = Prediction(
                extractor=extractor,
                label=UNKNOWN_LABEL if unknown else result.label,
                distance=result.distance,
                unknown=unknown,
            )

        best = recognition.best
        if best is not None:
            logger.info(
                f"Predicted '{best.label}' via {best.extractor.value} "
                f"(distance={best.distance:.4f})"
            )
        return recognition

    def enroll(self, image_np: np.ndarray, label: str) -> int:
        """
        Add a labeled sample to every enabled extractor's store.

        Returns:
            Number of stores the sample was appended to; 0 when the label
            is empty after sanitizing or nothing was detected.
        """
        safe_label = sanitize_label(label)
        if not safe_label:
            logger.warning("Empty label, sample not enrolled")
            return 0

        detection = detect_object(image_np, min_area=self.min_area)
        if not detection.valid:
            logger.warning("No valid detection, sample not enrolled")
            return 0

        written = 0
        for extractor in self.extractors:
            vector = self._features(extractor, image_np, detection)
            if vector is None:
                logger.warning(f"{extractor.value} extraction failed, not enrolled")
                continue
            path = self.store_path(extractor)
            append_feature_row(path, safe_label, vector)
            logger.info(f"Enrolled '{safe_label}' into {path}")
            written += 1
        return written
