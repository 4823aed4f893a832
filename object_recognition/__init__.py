"""
object_recognition: Single-object detection and nearest-neighbor labeling.

Turns a photograph of one object on a plain, light background into a
compact shape descriptor, then labels it against a small on-disk
feature database.

Modules:
    preprocessing      Image normalization and the embedding cropper
    thresholding       2-means adaptive binarization
    morphology         Erosion/dilation mask cleanup
    labeling           Two-pass union-find connected components
    region_features    Per-region moments, oriented box, shape vector
    selection          Grassfire scoring and best-region choice
    detection          Full detection pipeline and debug overlays
    metrics            Pluggable distance metrics
    feature_db         CSV feature store and freshness-checked cache
    matcher            FAISS-backed nearest-neighbor matching
    extractors         Baseline shape and external embedding extractors
    index_builder      Batch feature database construction
    engine             Frame classification and enrollment
    cli                Command-line entry point
"""

__version__ = "1.0.0"
