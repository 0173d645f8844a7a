"""
Expression Detector Interface Module

This module defines an abstract interface for expression detectors, so the
game loop can consume landmarks and expression probabilities from different
backends interchangeably:

  - PushedSampleDetector: the browser runs face-api.js and POSTs each result
    (the default; no model runs server-side)
  - ReplayDetector: recorded samples played back in order (demo, evaluation, tests)
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from utils.landmark_geometry import as_landmark_array

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class DetectionSample:
    """
    One detector result for one frame.

    landmarks is None when no face was detected; expressions may then be empty.
    """
    landmarks: Optional[np.ndarray] = None  # (68, 2) pixel coordinates
    expressions: Dict[str, float] = field(default_factory=dict)
    timestamp_ms: float = 0.0

    @property
    def has_face(self) -> bool:
        return self.landmarks is not None

    @classmethod
    def from_dict(cls, data: Any, timestamp_ms: Optional[float] = None) -> "DetectionSample":
        """
        Build a sample from a JSON payload.

        Accepts face-api.js shaped results ({"landmarks": {"positions": [...]},
        "expressions": {...}}) as well as plain point lists. A payload without
        a readable face yields a sample with landmarks=None.
        """
        if not isinstance(data, dict):
            return cls(timestamp_ms=timestamp_ms if timestamp_ms is not None else _now_ms())
        expressions = data.get("expressions") or {}
        if not isinstance(expressions, dict):
            expressions = {}
        clean: Dict[str, float] = {}
        for label, prob in expressions.items():
            try:
                clean[str(label)] = float(prob)
            except (TypeError, ValueError):
                continue
        ts = timestamp_ms
        if ts is None:
            raw_ts = data.get("timestampMs", data.get("timestamp"))
            ts = float(raw_ts) if isinstance(raw_ts, (int, float)) else _now_ms()
        return cls(landmarks=as_landmark_array(data.get("landmarks")), expressions=clean, timestamp_ms=ts)


class ExpressionDetectorInterface(ABC):
    """
    Abstract interface for expression detectors.

    All backends must implement this interface to work with GameSession.
    """

    @abstractmethod
    def detect(self, frame: Optional[np.ndarray] = None) -> Optional[DetectionSample]:
        """
        Detect the face in the current frame.

        Args:
            frame: BGR image array (OpenCV format), if the backend needs one

        Returns:
            DetectionSample, or None when nothing is available this cycle
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    def close(self) -> None:
        """
        Clean up resources. Override if needed.
        """
        pass


class PushedSampleDetector(ExpressionDetectorInterface):
    """
    Holds the latest sample pushed from the browser.

    push() is called from request threads; detect() from the game loop. The
    latest sample is served every cycle until a newer one arrives; once it is
    older than max_age_sec it counts as "no face" (tab hidden, network stall).
    """

    def __init__(self, max_age_sec: float = 1.0, clock=None):
        self.max_age_sec = max_age_sec
        self._clock = clock or _now_ms
        self._latest: Optional[DetectionSample] = None
        self._received_ms: Optional[float] = None
        self._lock = threading.Lock()

    def push(self, sample: DetectionSample) -> None:
        with self._lock:
            self._latest = sample
            self._received_ms = self._clock()

    def push_dict(self, data: Any) -> DetectionSample:
        sample = DetectionSample.from_dict(data, timestamp_ms=self._clock())
        self.push(sample)
        return sample

    def detect(self, frame: Optional[np.ndarray] = None) -> Optional[DetectionSample]:
        with self._lock:
            sample, received = self._latest, self._received_ms
        if sample is None:
            return None
        if received is not None and self._clock() - received > self.max_age_sec * 1000.0:
            return None
        return sample

    def is_available(self) -> bool:
        return True

    def get_name(self) -> str:
        return "browser"

    def close(self) -> None:
        with self._lock:
            self._latest = None
            self._received_ms = None


class ReplayDetector(ExpressionDetectorInterface):
    """
    Plays back recorded samples, one per detect() call.

    Usage:
        detector = ReplayDetector.from_file("data/replay_samples.json")
        sample = detector.detect()
    """

    def __init__(self, samples: List[DetectionSample], loop: bool = False):
        self.samples = list(samples)
        self.loop = loop
        self._index = 0
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str, loop: bool = False) -> "ReplayDetector":
        """Load a JSON list of sample payloads. Raises OSError / ValueError on bad files."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("samples", [])
        if not isinstance(data, list):
            raise ValueError(f"Replay file {path} does not contain a list of samples")
        samples = [DetectionSample.from_dict(entry, timestamp_ms=float(i)) for i, entry in enumerate(data)]
        logger.info("Loaded %d replay samples from %s", len(samples), path)
        return cls(samples, loop=loop)

    def detect(self, frame: Optional[np.ndarray] = None) -> Optional[DetectionSample]:
        with self._lock:
            if not self.samples:
                return None
            if self._index >= len(self.samples):
                if not self.loop:
                    return None
                self._index = 0
            sample = self.samples[self._index]
            self._index += 1
            return sample

    def is_available(self) -> bool:
        return bool(self.samples)

    def get_name(self) -> str:
        return "replay"
