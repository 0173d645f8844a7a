"""
Calibration capture.

The player makes each target expression once while the detector runs; the
ratios measured from that frame become their personalized ReferenceProfile.
The saved file is the same JSON resource load_profiles() reads, so the next
session matches against the player's own face.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from utils.detector_interface import DetectionSample
from utils.landmark_geometry import compute_ratios
from utils.reference_store import ReferenceProfile

logger = logging.getLogger(__name__)


def build_profile(expression_id: str, sample: DetectionSample, now: Optional[datetime] = None) -> ReferenceProfile:
    """
    Measure a profile from one detector sample.

    Raises:
        ValueError: the sample has no face
    """
    if sample is None or not sample.has_face:
        raise ValueError("No face detected; cannot calibrate")
    ratios = compute_ratios(sample.landmarks)
    now = now or datetime.now(timezone.utc)
    return ReferenceProfile(
        expression_id=expression_id,
        mouth_ratio=ratios.mouth_aspect_ratio,
        eye_ratio=ratios.eye_aspect_ratio,
        eyebrow_distance=ratios.eyebrow_distance,
        expressions=dict(sample.expressions),
        landmarks=sample.landmarks.copy(),
        timestamp=now.isoformat(),
    )


class CalibrationRecorder:
    """
    Collects profiles for the known expression ids. Thread-safe.

    Usage:
        recorder = CalibrationRecorder([m.id for m in store.catalog])
        recorder.capture("smirk", sample)
        recorder.save(config.CALIBRATION_OUTPUT_PATH)
    """

    def __init__(self, expression_ids: Iterable[str], profiles: Optional[Dict[str, ReferenceProfile]] = None):
        self.expression_ids = list(expression_ids)
        self._profiles: Dict[str, ReferenceProfile] = dict(profiles or {})
        self._lock = threading.Lock()

    def capture(self, expression_id: str, sample: DetectionSample) -> ReferenceProfile:
        """Record (or replace) the profile for expression_id. Raises ValueError on bad input."""
        if not expression_id:
            raise ValueError("No expression selected")
        if expression_id not in self.expression_ids:
            raise ValueError(f"Unknown expression id: {expression_id}")
        profile = build_profile(expression_id, sample)
        with self._lock:
            self._profiles[expression_id] = profile
        logger.info(
            "Captured %s: MR=%.3f, ER=%.3f, ED=%.2f",
            expression_id, profile.mouth_ratio, profile.eye_ratio, profile.eyebrow_distance,
        )
        return profile

    @property
    def profiles(self) -> Dict[str, ReferenceProfile]:
        with self._lock:
            return dict(self._profiles)

    def missing(self) -> list:
        with self._lock:
            return [e for e in self.expression_ids if e not in self._profiles]

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {expression_id: p.to_dict() for expression_id, p in self._profiles.items()}

    def save(self, path: str) -> int:
        """
        Write captured profiles as JSON. Returns the number written.

        Raises:
            OSError: the file cannot be written
        """
        data = self.to_dict()
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        logger.info("Saved %d calibration profiles to %s", len(data), path)
        return len(data)
