"""
In-memory store for unlock captures (player snapshot + matched meme).

Written by the game loop on each unlock; read by GET /game/captures and the
end screen. Cleared on restart.
"""

import threading
from typing import Any, Dict, List, Optional

from utils.frame_capture import png_data_url


def capture_record(expression_id: str, image_png: Optional[bytes], match: Any) -> Optional[Dict[str, Any]]:
    """
    Build the stored record, or None when there is no image or no match
    (nothing worth showing on the end screen).
    """
    if not image_png or match is None:
        return None
    return {
        "expressionId": expression_id,
        "expressionName": expression_id.replace("-", " "),
        "imageData": png_data_url(image_png),
        "memePath": match.meme.path,
        "similarity": match.similarity,
    }


class CaptureStore:
    """Thread-safe list of capture records, in unlock order."""

    def __init__(self):
        self._captures: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def add_capture(self, expression_id: str, image_png: Optional[bytes], match: Any) -> bool:
        """Store a capture. Returns False when it was skipped (missing image or match)."""
        record = capture_record(expression_id, image_png, match)
        if record is None:
            return False
        with self._lock:
            self._captures.append(record)
        return True

    def get_captures(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(c) for c in self._captures]

    def clear_captures(self) -> None:
        with self._lock:
            self._captures.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._captures)
