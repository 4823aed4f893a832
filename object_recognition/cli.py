"""
Command-line entry point.

    python -m object_recognition build --input DIR --output CSV
    python -m object_recognition classify --image PATH --data-dir DIR
"""

import argparse
import logging
import sys
from typing import List, Optional

import cv2

from .engine import ObjectRecognizer
from .extractors import ExtractorType
from .index_builder import build_feature_database
from .metrics import MetricType

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="object_recognition",
        description="Single-object shape recognition against a feature store",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for info, -vv for debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="build a feature store from images")
    build.add_argument("-i", "--input", required=True,
                       help="directory of training images")
    build.add_argument("-o", "--output", required=True,
                       help="output CSV feature store")
    build.add_argument("-e", "--extractor", default=ExtractorType.BASELINE.value,
                       choices=[ExtractorType.BASELINE.value],
                       help="feature extractor")
    build.add_argument("--min-area", type=int, default=None,
                       help="minimum region area in pixels")

    classify = sub.add_parser("classify", help="label the object in an image")
    classify.add_argument("--image", required=True, help="image to classify")
    classify.add_argument("--data-dir", required=True,
                          help="directory holding features_<extractor>.csv")
    classify.add_argument("--metric", default=MetricType.SSD.value,
                          choices=[m.value for m in MetricType],
                          help="distance metric")
    classify.add_argument("--threshold", type=float, default=None,
                          help="unknown rejection threshold")
    classify.add_argument("--no-reject", action="store_true",
                          help="disable unknown rejection")
    classify.add_argument("--min-area", type=int, default=None,
                          help="minimum region area in pixels")
    return parser


def _run_build(args) -> int:
    summary = build_feature_database(args.input, args.output,
                                     extractor=args.extractor,
                                     min_area=args.min_area)
    if not summary["success"]:
        print(f"build failed: {summary.get('error')}", file=sys.stderr)
        return 1
    print(f"wrote {summary['processed']} rows to {summary['output_path']} "
          f"({summary['skipped']} skipped, {summary['errors']} errors)")
    return 0


def _run_classify(args) -> int:
    image = cv2.imread(args.image)
    if image is None:
        print(f"could not read image: {args.image}", file=sys.stderr)
        return 1
    image_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    thresholds = None
    if args.threshold is not None:
        thresholds = {ExtractorType.BASELINE: args.threshold}
    recognizer = ObjectRecognizer(
        args.data_dir,
        metrics={ExtractorType.BASELINE: args.metric},
        reject_unknown=not args.no_reject,
        thresholds=thresholds,
        min_area=args.min_area,
    )

    recognition = recognizer.classify(image_rgb)
    if not recognition.detection.valid:
        print("no detection")
        return 1
    best = recognition.best
    if best is None:
        print("no match")
        return 1
    print(f"{best.label} {best.distance:.4f}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "build":
        return _run_build(args)
    return _run_classify(args)
