"""Numeric helpers for score fusion and voice-print comparison."""

import numpy as np


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return float(max(low, min(high, value)))


def cosine_similarity(a, b) -> float:
    """Cosine similarity mapped onto [0, 1]; zero vectors compare as 0."""
    v1 = np.asarray(a, dtype=np.float64)
    v2 = np.asarray(b, dtype=np.float64)
    if v1.shape != v2.shape:
        raise ValueError(f"Vector shapes differ: {v1.shape} vs {v2.shape}")
    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    if norm == 0:
        return 0.0
    return clamp(float(np.dot(v1, v2) / norm))


def pace_score(pace_a: float, pace_b: float) -> float:
    """1 minus the relative pace difference."""
    top = max(abs(pace_a), abs(pace_b))
    if top == 0:
        return 1.0
    return clamp(1.0 - abs(pace_a - pace_b) / top)


def interval_overlap(a: tuple, b: tuple) -> float:
    """Overlap length over union length of two [low, high] intervals."""
    low_a, high_a = sorted(a)
    low_b, high_b = sorted(b)
    union = max(high_a, high_b) - min(low_a, low_b)
    if union <= 0:
        # Both intervals collapse onto the same point
        return 1.0 if low_a == low_b else 0.0
    overlap = min(high_a, high_b) - max(low_a, low_b)
    return clamp(overlap / union)
