"""Tests for batch feature database construction."""

import os

import cv2
import pytest

from object_recognition.feature_db import read_feature_store
from object_recognition.index_builder import build_feature_database, list_images
from object_recognition.region_features import SHAPE_DIM


@pytest.fixture
def training_dir(tmp_path, red_square_image, green_rectangle_image, blank_image):
    """Directory with labeled training images and some noise."""
    image_dir = tmp_path / "images"
    image_dir.mkdir()
    for name, img in [("mug_1.png", red_square_image),
                      ("mug_2.png", red_square_image),
                      ("box_1.png", green_rectangle_image),
                      ("empty_1.png", blank_image)]:
        cv2.imwrite(str(image_dir / name), cv2.cvtColor(img, cv2.COLOR_RGB2BGR))
    (image_dir / "broken_1.png").write_bytes(b"not an image")
    (image_dir / "notes.txt").write_text("ignored")
    return str(image_dir)


class TestListImages:
    """Tests for training image discovery."""

    def test_filters_and_sorts(self, training_dir):
        assert list_images(training_dir) == [
            "box_1.png", "broken_1.png", "empty_1.png", "mug_1.png", "mug_2.png",
        ]


class TestBuildFeatureDatabase:
    """Tests for the build pass."""

    def test_baseline_build(self, training_dir, tmp_path):
        output = str(tmp_path / "features_baseline.csv")
        summary = build_feature_database(training_dir, output)

        assert summary["success"]
        assert summary["processed"] == 3
        assert summary["skipped"] == 1
        assert summary["errors"] == 1
        assert summary["dimensions"] == [SHAPE_DIM]

        entries, skipped = read_feature_store(output)
        assert [e.label for e in entries] == ["box", "mug", "mug"]
        assert skipped == 0

    def test_rebuild_truncates(self, training_dir, tmp_path):
        output = str(tmp_path / "features.csv")
        build_feature_database(training_dir, output)
        build_feature_database(training_dir, output)
        entries, _ = read_feature_store(output)
        assert len(entries) == 3

    def test_cnn_build(self, training_dir, tmp_path):
        output = str(tmp_path / "features_cnn.csv")
        summary = build_feature_database(
            training_dir, output, extractor="cnn",
            embedding_fn=lambda image: image.reshape(-1, 3).mean(axis=0) / 255.0,
        )
        assert summary["processed"] == 3
        assert summary["dimensions"] == [3]

    def test_cnn_requires_model(self, training_dir, tmp_path):
        with pytest.raises(ValueError):
            build_feature_database(training_dir, str(tmp_path / "f.csv"), extractor="cnn")

    def test_missing_directory(self, tmp_path):
        summary = build_feature_database(str(tmp_path / "nope"), str(tmp_path / "f.csv"))
        assert not summary["success"]
        assert "error" in summary

    def test_no_usable_images(self, tmp_path, blank_image):
        image_dir = tmp_path / "blank"
        image_dir.mkdir()
        cv2.imwrite(str(image_dir / "blank_1.png"), blank_image)
        output = str(tmp_path / "f.csv")

        summary = build_feature_database(str(image_dir), output)
        assert not summary["success"]
        assert summary["skipped"] == 1
        assert os.path.getsize(output) == 0
