"""
Landmark Geometry Module

Normalized geometric ratios computed from a 68-point facial landmark set
(face-api.js / dlib index convention):

    0-16 jaw, 17-21 right eyebrow, 22-26 left eyebrow, 27-35 nose,
    36-41 right eye, 42-47 left eye, 48-67 mouth

All functions are pure and fail safe: missing or malformed landmarks (wrong
point count, non-finite values, zero-width mouth or eye) produce 0 instead of
raising, so NaN/Infinity never reaches similarity math downstream.
"""

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np


NUM_LANDMARKS = 68

# Mouth: upper lip centre, lower lip centre, corners
UPPER_LIP_CENTER, LOWER_LIP_CENTER = 51, 57
MOUTH_LEFT_CORNER, MOUTH_RIGHT_CORNER = 48, 54

# Eye aspect ratio index groups: (top_a, bottom_a), (top_b, bottom_b), (corner_a, corner_b)
FIRST_EYE_EAR = ((37, 41), (38, 40), (39, 36))
SECOND_EYE_EAR = ((43, 47), (44, 46), (45, 42))

# Eyebrow centre -> eye top pairs
BROW_EYE_PAIRS = ((19, 37), (24, 43))

# Mouth opening bins (exclusive lower bounds, checked from the top)
MOUTH_INCREDIBLY_OPEN = 0.65
MOUTH_VERY_OPEN = 0.5
MOUTH_MODERATE = 0.35

MOUTH_BINS = ("closed", "moderate", "very_open", "incredibly_open")

DEFAULT_EYEBROW_RAISE_THRESHOLD = 25.0


@dataclass
class GeometricRatios:
    """Per-frame shape descriptors. Recomputed every frame; all values >= 0."""
    mouth_aspect_ratio: float = 0.0
    eye_aspect_ratio: float = 0.0
    eyebrow_distance: float = 0.0


def as_landmark_array(landmarks: Any) -> Optional[np.ndarray]:
    """
    Coerce detector output into a float (N, 2) array.

    Accepts an ndarray (extra columns such as z are dropped), a list of
    [x, y] pairs, a list of {"x", "y"} dicts, or a face-api style object with
    a "positions" list. Returns None when the input cannot be read as points.
    """
    if landmarks is None:
        return None
    if isinstance(landmarks, dict):
        landmarks = landmarks.get("positions", landmarks.get("_positions"))
        if landmarks is None:
            return None
    try:
        if isinstance(landmarks, np.ndarray):
            arr = landmarks
        else:
            points = list(landmarks)
            dict_points = [isinstance(p, dict) for p in points]
            if any(dict_points):
                # Mixed dict/list points are unreadable
                if not all(dict_points):
                    return None
                arr = np.array([[p.get("x", p.get("_x")), p.get("y", p.get("_y"))] for p in points], dtype=np.float64)
            else:
                arr = np.array(points, dtype=np.float64)
    except (TypeError, ValueError, AttributeError):
        return None
    if arr.ndim != 2 or arr.shape[1] < 2:
        return None
    try:
        return arr[:, :2].astype(np.float64)
    except (TypeError, ValueError):
        return None


def _full_set(landmarks: Any) -> Optional[np.ndarray]:
    """Return an (N>=68, 2) finite array or None."""
    pts = as_landmark_array(landmarks)
    if pts is None or pts.shape[0] < NUM_LANDMARKS:
        return None
    if not np.all(np.isfinite(pts[:NUM_LANDMARKS])):
        return None
    return pts


def mouth_aspect_ratio(landmarks: Any) -> float:
    """
    Mouth opening as height / width: |y57 - y51| / |x54 - x48|.

    Returns 0.0 when landmarks are missing/malformed or the mouth has zero width.
    """
    pts = _full_set(landmarks)
    if pts is None:
        return 0.0
    height = abs(pts[LOWER_LIP_CENTER, 1] - pts[UPPER_LIP_CENTER, 1])
    width = abs(pts[MOUTH_RIGHT_CORNER, 0] - pts[MOUTH_LEFT_CORNER, 0])
    if width <= 0:
        return 0.0
    return float(height / width)


def _single_eye_ear(pts: np.ndarray, groups) -> Optional[float]:
    (t1, b1), (t2, b2), (c1, c2) = groups
    vertical_1 = abs(pts[t1, 1] - pts[b1, 1])
    vertical_2 = abs(pts[t2, 1] - pts[b2, 1])
    horizontal = abs(pts[c1, 0] - pts[c2, 0])
    if horizontal <= 0:
        return None
    return (vertical_1 + vertical_2) / (2.0 * horizontal)


def eye_aspect_ratio(landmarks: Any) -> float:
    """
    Eye aspect ratio averaged over both eyes.

    Per eye: (two vertical lid gaps) / (2 * horizontal width). Returns 0.0 for
    malformed input or a zero-width eye.
    """
    pts = _full_set(landmarks)
    if pts is None:
        return 0.0
    first = _single_eye_ear(pts, FIRST_EYE_EAR)
    second = _single_eye_ear(pts, SECOND_EYE_EAR)
    if first is None or second is None:
        return 0.0
    return float((first + second) / 2.0)


def eyebrow_distance(landmarks: Any) -> float:
    """Mean vertical distance (pixels) between each eyebrow centre and its eye top."""
    pts = _full_set(landmarks)
    if pts is None:
        return 0.0
    distances = [abs(pts[brow, 1] - pts[eye, 1]) for brow, eye in BROW_EYE_PAIRS]
    return float(sum(distances) / len(distances))


def classify_mouth_opening(ratio: float) -> str:
    """Map a mouth aspect ratio to one of MOUTH_BINS."""
    if ratio > MOUTH_INCREDIBLY_OPEN:
        return "incredibly_open"
    elif ratio > MOUTH_VERY_OPEN:
        return "very_open"
    elif ratio > MOUTH_MODERATE:
        return "moderate"
    return "closed"


def eyebrows_raised(landmarks: Any, threshold: float = DEFAULT_EYEBROW_RAISE_THRESHOLD) -> bool:
    """
    True when eyebrow_distance exceeds threshold.

    The threshold is in source pixel units, so the result depends on camera
    resolution and distance from the camera.
    """
    if _full_set(landmarks) is None:
        return False
    return eyebrow_distance(landmarks) > threshold


def compute_ratios(landmarks: Any) -> GeometricRatios:
    """All three ratios for one frame."""
    return GeometricRatios(
        mouth_aspect_ratio=mouth_aspect_ratio(landmarks),
        eye_aspect_ratio=eye_aspect_ratio(landmarks),
        eyebrow_distance=eyebrow_distance(landmarks),
    )
