"""
Meme template preprocessing and cache.

Each meme image is run through a detector once; its key-landmark subset is
normalised and kept as the template vector the matcher compares against.
Results are cached as JSON so later sessions skip detection:

    {"version": 3, "timestamp": <ms>, "memes": [{"id": ..., "landmarks": [{"x", "y"}, ...]}]}

A cache is only trusted when its version matches, it holds one entry per
catalog meme, and every id is in the catalog.

The server itself builds templates with templates_from_samples(): the browser
runs face-api.js on each meme image and POSTs the results to /templates.
preprocess_memes() is the offline path for a detector that runs on images;
catalog paths are web paths (/nailong/*.png), so offline use needs an
image_loader that maps them to files on disk.
"""

import json
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import cv2
import numpy as np

from utils.detector_interface import DetectionSample, ExpressionDetectorInterface
from utils.landmark_geometry import as_landmark_array
from utils.landmark_normalizer import key_landmark_vector
from utils.reference_store import MemeTemplate

logger = logging.getLogger(__name__)

# Bump when the key-landmark subset or normalisation changes
TEMPLATE_CACHE_VERSION = 3


def load_meme_image(meme: MemeTemplate) -> Optional[np.ndarray]:
    """Default image loader: read meme.path with OpenCV (BGR). Only works when path is a local file."""
    if not meme.path:
        return None
    return cv2.imread(meme.path, cv2.IMREAD_COLOR)


def extract_template_landmarks(image: Optional[np.ndarray], detector: ExpressionDetectorInterface) -> Optional[np.ndarray]:
    """Normalised key-landmark vector for the face in image, or None if no face."""
    if image is None:
        return None
    sample = detector.detect(image)
    if sample is None or not sample.has_face:
        return None
    return key_landmark_vector(sample.landmarks)


def preprocess_memes(
    catalog: Sequence[MemeTemplate],
    detector: ExpressionDetectorInterface,
    image_loader: Callable[[MemeTemplate], Optional[np.ndarray]] = load_meme_image,
) -> Dict[str, np.ndarray]:
    """
    Build template vectors for every meme in the catalog.

    Memes whose image fails to load or has no detectable face are logged and
    left out of the result.
    """
    templates: Dict[str, np.ndarray] = {}
    failed: List[str] = []
    for meme in catalog:
        try:
            vector = extract_template_landmarks(image_loader(meme), detector)
        except (OSError, ValueError, cv2.error) as e:
            logger.warning("Error processing meme %s: %s", meme.name, e)
            failed.append(meme.name)
            continue
        if vector is None:
            logger.warning("No face detected in meme %s", meme.name)
            failed.append(meme.name)
            continue
        templates[meme.id] = vector
    logger.info("Preprocessed %d/%d memes", len(templates), len(catalog))
    if failed:
        logger.warning("Failed to process: %s", ", ".join(failed))
    return templates


def templates_from_samples(catalog: Sequence[MemeTemplate], samples: Dict[str, Any]) -> Dict[str, np.ndarray]:
    """
    Template vectors from detector results computed elsewhere (the browser
    runs face-api.js on each meme image and posts {memeId: sample}).
    """
    known = {m.id for m in catalog}
    templates: Dict[str, np.ndarray] = {}
    for meme_id, payload in (samples or {}).items():
        if meme_id not in known:
            logger.warning("Ignoring template for unknown meme %s", meme_id)
            continue
        sample = payload if isinstance(payload, DetectionSample) else DetectionSample.from_dict(payload)
        vector = key_landmark_vector(sample.landmarks) if sample.has_face else None
        if vector is None:
            logger.warning("No face in template sample for %s", meme_id)
            continue
        templates[meme_id] = vector
    return templates


def save_template_cache(path: str, templates: Dict[str, Any]) -> bool:
    """Write templates to path. Returns False (logged) if the file cannot be written."""
    data = {
        "version": TEMPLATE_CACHE_VERSION,
        "timestamp": int(time.time() * 1000),
        "memes": [
            {"id": meme_id, "landmarks": [{"x": float(x), "y": float(y)} for x, y in as_landmark_array(vector)]}
            for meme_id, vector in templates.items()
            if as_landmark_array(vector) is not None
        ],
    }
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f)
    except OSError as e:
        logger.warning("Failed to write template cache %s: %s", path, e)
        return False
    logger.info("Cached %d meme templates to %s (v%d)", len(data["memes"]), path, TEMPLATE_CACHE_VERSION)
    return True


def load_template_cache(path: str, catalog: Sequence[MemeTemplate]) -> Optional[Dict[str, np.ndarray]]:
    """Cached templates keyed by meme id, or None if the cache is missing or stale."""
    if not path or not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Failed to read template cache %s: %s", path, e)
        return None

    if not isinstance(data, dict) or data.get("version") != TEMPLATE_CACHE_VERSION:
        version = data.get("version") if isinstance(data, dict) else None
        logger.info("Template cache outdated (version %s -> %d)", version or 1, TEMPLATE_CACHE_VERSION)
        return None
    entries = data.get("memes")
    if not isinstance(entries, list) or len(entries) != len(catalog):
        logger.info("Template cache outdated (meme count mismatch)")
        return None

    known = {m.id for m in catalog}
    templates: Dict[str, np.ndarray] = {}
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("id") not in known:
            return None
        vector = as_landmark_array(entry.get("landmarks"))
        if vector is None:
            return None
        templates[entry["id"]] = vector
    if len(templates) != len(catalog):
        return None
    logger.info("Loaded %d meme templates from cache", len(templates))
    return templates
