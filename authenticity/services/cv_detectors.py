"""
OpenCV detectors for still images and single video frames.

Heuristic stand-ins for hosted models: synthetic-texture artifacts, photo
manipulation intensity and face similarity. Every score is normalised onto
[0, 1], higher meaning more suspicious (or, for faces, more similar).
"""

import asyncio
import logging

import cv2
import numpy as np

from ..models.domain import Artifact, Manipulation
from ..utils.cv_utils import blocks, face_crop, load_media_image, scale, to_gray
from .detectors import ArtifactDetector, FaceMatcher, PhotoManipulationDetector
from .media_store import MediaStore

logger = logging.getLogger(__name__)


def quantization_score(img: np.ndarray) -> float:
    """
    Analyze 8x8 block boundaries.
    Uneven boundary steps suggest regions saved at different compression levels.
    """
    gray = to_gray(img).astype(np.float64)
    h, w = gray.shape

    horizontal = [np.mean(np.abs(gray[y, :] - gray[y - 1, :])) for y in range(8, h - 8, 8)]
    vertical = [np.mean(np.abs(gray[:, x] - gray[:, x - 1])) for x in range(8, w - 8, 8)]
    if not horizontal or not vertical:
        return 0.0

    avg_std = (np.std(horizontal) + np.std(vertical)) / 2
    return scale(avg_std, 10.0)


def shadow_score(img: np.ndarray) -> float:
    """
    Noise level inconsistency across blocks.
    Composited lighting and shadows carry a different noise pattern.
    """
    noise_levels = [
        cv2.Laplacian(block.astype(np.float64), cv2.CV_64F).std()
        for block in blocks(to_gray(img))
    ]
    if len(noise_levels) < 4:
        return 0.0

    cv = np.std(noise_levels) / max(np.mean(noise_levels), 0.001)
    return scale(cv, 1.6)


def hair_edge_score(img: np.ndarray) -> float:
    """Edge density imbalance between quadrants, typical of smeared hair boundaries."""
    gray = to_gray(img)
    edges = cv2.Canny(gray, 100, 200)
    h, w = gray.shape
    quadrants = [
        edges[0:h // 2, 0:w // 2],
        edges[0:h // 2, w // 2:],
        edges[h // 2:, 0:w // 2],
        edges[h // 2:, w // 2:],
    ]
    densities = [np.count_nonzero(q) / max(q.size, 1) for q in quadrants]
    return scale(max(densities) - min(densities), 0.3)


def reflection_score(img: np.ndarray) -> float:
    """
    Error Level Analysis over the image.
    Regions lit or pasted separately recompress differently.
    """
    _, encoded = cv2.imencode(".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, 90])
    recompressed = cv2.imdecode(encoded, cv2.IMREAD_UNCHANGED)
    diff = to_gray(cv2.absdiff(img, recompressed))

    variances = [np.var(block) for block in blocks(diff)]
    if not variances:
        return 0.0

    ratio = (max(variances) - min(variances)) / max(np.mean(variances), 0.001)
    return scale(ratio, 6.0)


def gan_upsampling_score(img: np.ndarray) -> float:
    """
    Periodic peaks in the frequency domain.
    Transposed-convolution upsampling leaves energy on the half-Nyquist grid.
    """
    gray = to_gray(img).astype(np.float64)
    spectrum = np.abs(np.fft.fftshift(np.fft.fft2(gray)))
    spectrum = np.log1p(spectrum)

    h, w = spectrum.shape
    cy, cx = h // 2, w // 2
    if h < 16 or w < 16:
        return 0.0

    peaks = [
        spectrum[cy + dy, cx + dx]
        for dy in (-h // 4, 0, h // 4)
        for dx in (-w // 4, 0, w // 4)
        if (dy, dx) != (0, 0)
    ]
    baseline = np.median(spectrum)
    ratio = np.mean(peaks) / max(baseline, 0.001)
    return scale(ratio - 1.0, 1.0)


def floating_features_score(img: np.ndarray) -> float:
    """
    Self-matching ORB features far apart in the same image.
    Duplicated or detached facial features match themselves elsewhere.
    """
    gray = to_gray(img)
    orb = cv2.ORB_create(nfeatures=1000)
    kp, des = orb.detectAndCompute(gray, None)
    if des is None or len(kp) < 50:
        return 0.0

    bf = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
    matches = bf.knnMatch(des, des, k=3)

    suspicious = 0
    for group in matches:
        if len(group) < 3:
            continue
        # group[0] is the identity match
        m = group[1]
        if m.distance < 30:
            pt1, pt2 = kp[m.queryIdx].pt, kp[m.trainIdx].pt
            if np.hypot(pt1[0] - pt2[0], pt1[1] - pt2[1]) > 50:
                suspicious += 1

    return scale(suspicious / max(len(matches), 1), 0.1)


ARTIFACT_HEURISTICS = {
    Artifact.QUANTIZATION: quantization_score,
    Artifact.SHADOW: shadow_score,
    Artifact.HAIR_EDGE: hair_edge_score,
    Artifact.LIGHTING_REFLECTION: reflection_score,
    Artifact.GAN_UPSAMPLING: gan_upsampling_score,
    Artifact.FLOATING_FEATURES: floating_features_score,
}


def filter_score(img: np.ndarray) -> float:
    """Oversaturation plus loss of fine detail."""
    hsv = cv2.cvtColor(img, cv2.COLOR_BGR2HSV)
    saturation = scale(np.mean(hsv[:, :, 1]), 200.0)
    sharpness = cv2.Laplacian(to_gray(img), cv2.CV_64F).var()
    smoothing = 1.0 - scale(sharpness, 300.0)
    return float(0.5 * saturation + 0.5 * smoothing)


def beauty_ai_score(img: np.ndarray) -> float:
    """Skin smoothing: very low texture inside the face region."""
    face = face_crop(img)
    texture = cv2.Laplacian(face, cv2.CV_64F).var()
    return 1.0 - scale(texture, 150.0)


def body_morph_score(img: np.ndarray) -> float:
    """
    Warped background lines.
    Liquify tools bend straight edges, so fewer edge pixels sit on straight segments.
    """
    gray = to_gray(img)
    edges = cv2.Canny(gray, 50, 150, apertureSize=3)
    edge_pixels = np.count_nonzero(edges)
    if edge_pixels == 0:
        return 0.0

    lines = cv2.HoughLinesP(edges, 1, np.pi / 180, 60, minLineLength=40, maxLineGap=5)
    straight = 0.0
    if lines is not None:
        straight = sum(np.hypot(l[0][2] - l[0][0], l[0][3] - l[0][1]) for l in lines)

    straight_ratio = scale(straight, edge_pixels)
    return 1.0 - straight_ratio


MANIPULATION_HEURISTICS = {
    Manipulation.FILTER: filter_score,
    Manipulation.BEAUTY_AI: beauty_ai_score,
    Manipulation.BODY_MORPH: body_morph_score,
}


def orb_similarity(face_a: np.ndarray, face_b: np.ndarray, ratio: float = 0.75) -> float:
    """Share of ORB descriptors passing Lowe's ratio test."""
    orb = cv2.ORB_create(nfeatures=500)
    _, des1 = orb.detectAndCompute(face_a, None)
    _, des2 = orb.detectAndCompute(face_b, None)
    if des1 is None or des2 is None or len(des1) < 2 or len(des2) < 2:
        return 0.0

    matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
    good = [
        pair[0] for pair in matcher.knnMatch(des1, des2, k=2)
        if len(pair) == 2 and pair[0].distance < ratio * pair[1].distance
    ]
    return len(good) / min(len(des1), len(des2))


def histogram_similarity(face_a: np.ndarray, face_b: np.ndarray) -> float:
    hist_a = cv2.calcHist([face_a], [0], None, [64], [0, 256])
    hist_b = cv2.calcHist([face_b], [0], None, [64], [0, 256])
    cv2.normalize(hist_a, hist_a)
    cv2.normalize(hist_b, hist_b)
    return max(0.0, float(cv2.compareHist(hist_a, hist_b, cv2.HISTCMP_CORREL)))


class OpenCVArtifactDetector(ArtifactDetector):
    """Synthetic-texture artifact scores for a photo or one video frame."""

    def __init__(self, media_store: MediaStore):
        self.media_store = media_store

    async def score(self, media_ref: str, artifact: Artifact) -> float:
        media = await self.media_store.fetch(media_ref)
        value = await asyncio.to_thread(self._score, media, artifact)
        logger.debug(f"Artifact {artifact.value} on {media_ref}: {value:.3f}")
        return value

    def _score(self, media: bytes, artifact: Artifact) -> float:
        return ARTIFACT_HEURISTICS[artifact](load_media_image(media))


class OpenCVManipulationDetector(PhotoManipulationDetector):
    """Filter, beauty-AI and body-morph intensity of a photo."""

    def __init__(self, media_store: MediaStore):
        self.media_store = media_store

    async def score(self, photo_ref: str, manipulation: Manipulation) -> float:
        media = await self.media_store.fetch(photo_ref)
        return await asyncio.to_thread(self._score, media, manipulation)

    def _score(self, media: bytes, manipulation: Manipulation) -> float:
        return MANIPULATION_HEURISTICS[manipulation](load_media_image(media))


class OrbFaceMatcher(FaceMatcher):
    """
    Face similarity from Haar-cascade face crops.

    Blends ORB keypoint agreement with grayscale histogram correlation;
    ``match_ratio`` is the ORB agreement treated as a certain match.
    """

    def __init__(self, media_store: MediaStore, match_ratio: float = 0.4):
        self.media_store = media_store
        self.match_ratio = match_ratio

    async def similarity(self, photo_a: str, photo_b: str) -> float:
        media_a, media_b = await asyncio.gather(
            self.media_store.fetch(photo_a), self.media_store.fetch(photo_b),
        )
        return await asyncio.to_thread(self._similarity, media_a, media_b)

    def _similarity(self, media_a: bytes, media_b: bytes) -> float:
        face_a = face_crop(load_media_image(media_a))
        face_b = face_crop(load_media_image(media_b))
        keypoints = scale(orb_similarity(face_a, face_b), self.match_ratio)
        return float(0.6 * keypoints + 0.4 * histogram_similarity(face_a, face_b))
