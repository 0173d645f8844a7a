"""
Video Source Handler Module

This module provides a unified interface for the frames the game captures on
unlock:
- Webcam (default camera)
- Local video files
- Browser (frames POSTed by the frontend, which owns the camera)

Frames are only needed for the unlock snapshot; detection itself arrives as
landmarks + expressions through utils.detector_interface.
"""

import logging
import sys
import threading
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# Latest frame pushed by the browser
_browser_frame: Optional[np.ndarray] = None
_browser_frame_lock = threading.Lock()

# Larger frames are downscaled before storing
BROWSER_FRAME_MAX_WIDTH = 1280


def set_browser_frame(frame_bgr: Optional[np.ndarray]) -> None:
    global _browser_frame
    with _browser_frame_lock:
        _browser_frame = frame_bgr.copy() if frame_bgr is not None else None


def get_browser_frame() -> Optional[np.ndarray]:
    """Copy of the latest browser frame (not cleared), or None."""
    with _browser_frame_lock:
        out = _browser_frame
        return out.copy() if out is not None else None


def set_browser_frame_from_bytes(image_bytes: bytes) -> bool:
    """
    Decode JPEG/PNG bytes to BGR and store them as the latest browser frame.
    Returns False when the bytes do not decode.
    """
    if not image_bytes:
        return False
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    frame = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if frame is None:
        return False
    h, w = frame.shape[:2]
    if w > BROWSER_FRAME_MAX_WIDTH:
        scale = BROWSER_FRAME_MAX_WIDTH / w
        frame = cv2.resize(
            frame, (BROWSER_FRAME_MAX_WIDTH, int(round(h * scale))), interpolation=cv2.INTER_AREA
        )
    set_browser_frame(frame)
    return True


class VideoSourceType(Enum):
    WEBCAM = "webcam"
    FILE = "file"
    BROWSER = "browser"


class VideoSourceHandler:
    """
    Reads frames from one source.

    Usage:
        handler = VideoSourceHandler()
        handler.initialize_source(VideoSourceType.WEBCAM)
        ok, frame = handler.read_frame()
    """

    def __init__(self):
        self.cap: Optional[cv2.VideoCapture] = None
        self.source_type: Optional[VideoSourceType] = None
        self.source_path: Optional[str] = None

    def initialize_source(self, source_type: VideoSourceType, source_path: Optional[str] = None) -> bool:
        """
        Open a source. Returns False if it cannot be opened.

        Raises:
            ValueError: FILE without a source_path
        """
        self.release()
        self.source_type = source_type
        self.source_path = source_path

        if source_type == VideoSourceType.BROWSER:
            return True

        if source_type == VideoSourceType.FILE:
            if not source_path:
                raise ValueError("source_path is required for file sources")
            self.cap = cv2.VideoCapture(source_path)
        elif source_type == VideoSourceType.WEBCAM:
            apis = [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_ANY] if sys.platform == "win32" else [cv2.CAP_ANY]
            for api in apis:
                cap = cv2.VideoCapture(0, api)
                if cap.isOpened():
                    self.cap = cap
                    break
                cap.release()
            if self.cap is not None:
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, 1280)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 720)
                self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        else:
            raise ValueError(f"Unsupported source type: {source_type}")

        if self.cap is None or not self.cap.isOpened():
            logger.warning("Could not open %s source %s", source_type.value, source_path or "")
            self.release()
            return False
        return True

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """(success, BGR frame or None)."""
        if self.source_type == VideoSourceType.BROWSER:
            frame = get_browser_frame()
            return (True, frame) if frame is not None else (False, None)
        if not self.cap or not self.cap.isOpened():
            return False, None
        ret, frame = self.cap.read()
        if not ret or frame is None:
            return False, None
        return True, frame

    def release(self) -> None:
        if self.cap:
            self.cap.release()
            self.cap = None
        if self.source_type == VideoSourceType.BROWSER:
            set_browser_frame(None)
        self.source_type = None
        self.source_path = None

    def __del__(self):
        self.release()
