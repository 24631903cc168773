"""Tests for the OpenCV artifact, manipulation and face-similarity heuristics."""

import cv2
import numpy as np
import pytest

from authenticity.errors import NotFound
from authenticity.models.domain import Artifact, Manipulation
from authenticity.services.cv_detectors import (
    ARTIFACT_HEURISTICS, MANIPULATION_HEURISTICS, OpenCVArtifactDetector,
    OrbFaceMatcher, filter_score, hair_edge_score,
)
from authenticity.services.media_store import MediaStore
from authenticity.utils.cv_utils import load_media_image


def _noise_image(size=256, seed=0) -> np.ndarray:
    """Gray noise, rich in keypoints and edges."""
    rng = np.random.default_rng(seed)
    gray = rng.integers(0, 256, (size, size), dtype=np.uint8)
    return cv2.merge([gray, gray, gray])


def _shapes_image(size=256) -> np.ndarray:
    img = np.zeros((size, size, 3), dtype=np.uint8)
    cv2.rectangle(img, (30, 30), (120, 200), (200, 200, 200), -1)
    cv2.circle(img, (180, 90), 40, (90, 90, 90), -1)
    return img


def _write(path, img) -> None:
    cv2.imwrite(str(path), img)


class TestHeuristics:
    @pytest.mark.parametrize("artifact", list(Artifact))
    def test_artifact_scores_in_range(self, artifact):
        for img in (_noise_image(), _shapes_image(), np.full((128, 128, 3), 127, np.uint8)):
            assert 0.0 <= ARTIFACT_HEURISTICS[artifact](img) <= 1.0

    @pytest.mark.parametrize("manipulation", list(Manipulation))
    def test_manipulation_scores_in_range(self, manipulation):
        for img in (_noise_image(), _shapes_image()):
            assert 0.0 <= MANIPULATION_HEURISTICS[manipulation](img) <= 1.0

    def test_flat_image_has_no_texture_artifacts(self):
        flat = np.full((256, 256, 3), 127, np.uint8)
        for artifact in (Artifact.QUANTIZATION, Artifact.SHADOW, Artifact.HAIR_EDGE, Artifact.FLOATING_FEATURES):
            assert ARTIFACT_HEURISTICS[artifact](flat) == 0.0

    def test_edges_in_one_quadrant(self):
        img = np.full((256, 256, 3), 127, np.uint8)
        img[:128, :128] = _noise_image(128)
        assert hair_edge_score(img) > 0.5

    def test_saturated_smooth_photo_scores_as_filtered(self):
        saturated = np.zeros((128, 128, 3), np.uint8)
        saturated[:, :] = (0, 0, 255)
        assert filter_score(saturated) > 0.9
        assert filter_score(_noise_image(128)) < 0.1

    def test_undecodable_media(self):
        with pytest.raises(ValueError):
            load_media_image(b"definitely not an image")


class TestMediaBackedDetectors:
    def setup_method(self):
        self.noise = _noise_image()
        self.shapes = _shapes_image()

    def _store(self, tmp_path) -> MediaStore:
        _write(tmp_path / "noise.png", self.noise)
        _write(tmp_path / "noise-copy.png", self.noise)
        _write(tmp_path / "shapes.png", self.shapes)
        return MediaStore(connection_string="", local_dir=str(tmp_path))

    @pytest.mark.asyncio
    async def test_artifact_detector_reads_from_store(self, tmp_path):
        detector = OpenCVArtifactDetector(self._store(tmp_path))
        value = await detector.score("shapes.png", Artifact.GAN_UPSAMPLING)
        assert 0.0 <= value <= 1.0

    @pytest.mark.asyncio
    async def test_missing_media(self, tmp_path):
        detector = OpenCVArtifactDetector(self._store(tmp_path))
        with pytest.raises(NotFound):
            await detector.score("absent.png", Artifact.SHADOW)

    @pytest.mark.asyncio
    async def test_identical_photos_are_more_similar(self, tmp_path):
        matcher = OrbFaceMatcher(self._store(tmp_path))
        same = await matcher.similarity("noise.png", "noise-copy.png")
        different = await matcher.similarity("noise.png", "shapes.png")

        assert same > 0.9
        assert different < same
