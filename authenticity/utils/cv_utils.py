"""OpenCV utility functions for identity media."""

import os
import tempfile

import cv2
import numpy as np


def bytes_to_cv2(image_bytes: bytes, grayscale: bool = False) -> np.ndarray | None:
    """Convert raw bytes to OpenCV image."""
    nparr = np.frombuffer(image_bytes, np.uint8)
    flag = cv2.IMREAD_GRAYSCALE if grayscale else cv2.IMREAD_COLOR
    return cv2.imdecode(nparr, flag)


def video_frame(video_bytes: bytes, position: float = 0.5) -> np.ndarray | None:
    """
    Grab one frame from an encoded video.

    OpenCV can only open videos from a path, so the bytes are spooled to a
    temporary file first.
    """
    fd, path = tempfile.mkstemp(suffix=".mp4")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(video_bytes)
        capture = cv2.VideoCapture(path)
        try:
            total = int(capture.get(cv2.CAP_PROP_FRAME_COUNT))
            if total > 0:
                capture.set(cv2.CAP_PROP_POS_FRAMES, int(total * position))
            ok, frame = capture.read()
        finally:
            capture.release()
        return frame if ok else None
    finally:
        os.remove(path)


def load_media_image(media_bytes: bytes) -> np.ndarray:
    """Decode a still image, or a representative frame of a video."""
    img = bytes_to_cv2(media_bytes)
    if img is None:
        img = video_frame(media_bytes)
    if img is None:
        raise ValueError("Media could not be decoded as an image or video")
    return img


def to_gray(img: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY) if len(img.shape) == 3 else img


def detect_face(gray: np.ndarray) -> list:
    """Largest frontal face as [x, y, w, h], or [] when none is found."""
    face_cascade = cv2.CascadeClassifier(
        cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
    )
    faces = face_cascade.detectMultiScale(gray, scaleFactor=1.1, minNeighbors=5, minSize=(30, 30))
    if len(faces) == 0:
        return []
    x, y, w, h = max(faces, key=lambda f: f[2] * f[3])
    return [int(x), int(y), int(w), int(h)]


def face_crop(img: np.ndarray, size: int = 200) -> np.ndarray:
    """Grayscale face region resized to a square; whole image when no face is found."""
    gray = to_gray(img)
    box = detect_face(gray)
    if box:
        x, y, w, h = box
        gray = gray[y:y + h, x:x + w]
    return cv2.resize(gray, (size, size), interpolation=cv2.INTER_AREA)


def blocks(gray: np.ndarray, block_size: int = 64):
    """Yield non-overlapping square blocks of an image."""
    h, w = gray.shape[:2]
    for y in range(0, h - block_size, block_size):
        for x in range(0, w - block_size, block_size):
            yield gray[y:y + block_size, x:x + block_size]


def scale(value: float, full: float) -> float:
    """Map ``value`` onto [0, 1] where ``full`` and above saturate to 1."""
    if full <= 0:
        return 0.0
    return float(min(max(value / full, 0.0), 1.0))
