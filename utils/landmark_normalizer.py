"""
Landmark Normalizer Module

Translates and scales landmark sets into a pose/scale-invariant form so two
faces photographed at different sizes and positions can be compared point by
point. Also projects the 68-point set onto the expression-critical regions
(eyebrows, eyes, nose, mouth) so jaw and face-shape differences do not
dominate the distance.
"""

import logging
import math
from typing import Any, Optional

import numpy as np

from utils.landmark_geometry import NUM_LANDMARKS, as_landmark_array

logger = logging.getLogger(__name__)

# Eyebrows 17-26, eyes 36-47, nose bridge 27-30, nose tip 33-35, mouth 48-67.
KEY_LANDMARK_INDICES = (
    list(range(17, 27))
    + list(range(36, 48))
    + [27, 28, 29, 30, 33, 34, 35]
    + list(range(48, 68))
)


def normalize_landmarks(landmarks: Any) -> Optional[np.ndarray]:
    """
    Centre points on their centroid and divide by the RMS radial distance.

    If every point coincides (scale exactly 0) the centred points are returned
    unscaled. Returns None for empty or unreadable input.
    """
    pts = as_landmark_array(landmarks)
    if pts is None or pts.shape[0] == 0:
        return None
    centered = pts - pts.mean(axis=0)
    scale = math.sqrt(float(np.mean(np.sum(centered * centered, axis=1))))
    if scale == 0:
        return centered
    return centered / scale


def extract_key_landmarks(landmarks: Any) -> Optional[np.ndarray]:
    """
    Project a 68-point set onto KEY_LANDMARK_INDICES (order preserved).

    Sets with fewer than 68 points are returned as-is.
    """
    pts = as_landmark_array(landmarks)
    if pts is None:
        return None
    if pts.shape[0] < NUM_LANDMARKS:
        return pts
    return pts[KEY_LANDMARK_INDICES]


def euclidean_distance(a: Any, b: Any) -> float:
    """
    Square root of the summed squared coordinate differences of paired points.

    Returns math.inf when either set is missing or the lengths differ.
    """
    pa = as_landmark_array(a)
    pb = as_landmark_array(b)
    if pa is None or pb is None:
        return math.inf
    if pa.shape[0] != pb.shape[0]:
        logger.warning("Landmark sets differ in length (%d vs %d)", pa.shape[0], pb.shape[0])
        return math.inf
    diff = pa - pb
    return float(math.sqrt(float(np.sum(diff * diff))))


def key_landmark_vector(landmarks: Any) -> Optional[np.ndarray]:
    """Key-region subset, normalised. The form stored for meme templates."""
    return normalize_landmarks(extract_key_landmarks(landmarks))
