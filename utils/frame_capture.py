"""
Snapshot encoding for unlock captures.
"""

import base64
import logging
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def capture_frame_png(frame: Optional[np.ndarray]) -> Optional[bytes]:
    """
    Encode a BGR frame as PNG.

    Returns None (and logs a warning) when there is no frame or encoding
    fails; the unlock still goes ahead without an image.
    """
    if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
        logger.warning("Unlock capture skipped: no frame available")
        return None
    try:
        ok, buf = cv2.imencode(".png", frame)
    except cv2.error as e:
        logger.warning("Unlock capture failed: %s", e)
        return None
    if not ok:
        logger.warning("Unlock capture failed: PNG encoding returned no data")
        return None
    return buf.tobytes()


def png_data_url(png: Optional[bytes]) -> Optional[str]:
    """data:image/png;base64,... form the frontend can put in an <img>."""
    if not png:
        return None
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
