"""
Reference Data Store

Holds the two kinds of reference data the expression matcher compares against:

  1. Personalized calibration profiles: ratios (and raw landmarks) captured
     from the actual player for each target expression.
  2. Meme templates: the static catalog of target expressions, optionally
     carrying a precomputed normalized key-landmark vector extracted from the
     meme image.

Loading follows the same precedence for every resource: URL (requests), else
local JSON file, else empty. Bad entries are skipped and logged; loading never
raises, so a missing calibration file only means the matcher falls back to
templates or rules.

Catalog JSON:  {"memes": [{"id", "name", "path", "expression"}, ...]} or a bare list
Profile JSON:  {"<expressionId>": {"mouthRatio", "eyeRatio", "eyebrowDistance",
                                   "expressions", "landmarks", "timestamp"}, ...}
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import requests

import config
from utils.landmark_geometry import as_landmark_array

logger = logging.getLogger(__name__)


@dataclass
class MemeTemplate:
    """One target expression from the static catalog."""
    id: str
    name: str
    path: str
    expression: str = ""
    key_landmarks: Optional[np.ndarray] = None  # normalized key-landmark vector, if precomputed

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "path": self.path, "expression": self.expression}


@dataclass(frozen=True)
class ReferenceProfile:
    """Personalized measurements for one expression, captured during calibration."""
    expression_id: str
    mouth_ratio: float
    eye_ratio: float
    eyebrow_distance: float
    expressions: Dict[str, float] = field(default_factory=dict)
    landmarks: Optional[np.ndarray] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON form written by the calibration flow (camelCase keys)."""
        return {
            "expression": self.expression_id,
            "timestamp": self.timestamp,
            "mouthRatio": self.mouth_ratio,
            "eyeRatio": self.eye_ratio,
            "eyebrowDistance": self.eyebrow_distance,
            "expressions": dict(self.expressions),
            "landmarks": (
                [{"x": float(x), "y": float(y)} for x, y in self.landmarks]
                if self.landmarks is not None else []
            ),
        }


class ReferenceStore:
    """
    In-memory reference data for one game session.

    Built once at startup (see initialize_reference_store) and treated as
    read-only while a session runs. Profiles keep insertion order, which the
    matcher relies on for deterministic tie-breaking.
    """

    def __init__(
        self,
        catalog: Optional[List[MemeTemplate]] = None,
        profiles: Optional[Dict[str, ReferenceProfile]] = None,
    ):
        self.catalog: List[MemeTemplate] = list(catalog or [])
        self.profiles: Dict[str, ReferenceProfile] = dict(profiles or {})
        self._by_id: Dict[str, MemeTemplate] = {m.id: m for m in self.catalog}

    def get_profile(self, expression_id: str) -> Optional[ReferenceProfile]:
        return self.profiles.get(expression_id)

    def get_template(self, expression_id: str) -> Optional[MemeTemplate]:
        return self._by_id.get(expression_id)

    def find_meme(self, meme_id: str) -> Optional[MemeTemplate]:
        return self._by_id.get(meme_id)

    def has_profiles(self) -> bool:
        return bool(self.profiles)

    def has_templates(self) -> bool:
        return any(m.key_landmarks is not None for m in self.catalog)

    def templates(self) -> Dict[str, np.ndarray]:
        """Meme id -> key-landmark vector, for memes that have one (catalog order)."""
        return {m.id: m.key_landmarks for m in self.catalog if m.key_landmarks is not None}

    def attach_templates(self, templates: Dict[str, Any]) -> int:
        """
        Attach precomputed key-landmark vectors to catalog entries.
        Returns the number attached; unknown ids are ignored.
        """
        attached = 0
        for meme_id, vector in (templates or {}).items():
            meme = self._by_id.get(meme_id)
            arr = as_landmark_array(vector)
            if meme is None or arr is None:
                continue
            meme.key_landmarks = arr
            attached += 1
        return attached

    def summary(self) -> Dict[str, Any]:
        return {
            "memes": len(self.catalog),
            "profiles": list(self.profiles.keys()),
            "templates": list(self.templates().keys()),
        }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_catalog(data: Any) -> List[MemeTemplate]:
    """Build MemeTemplates from catalog JSON. Entries without an id are skipped."""
    entries = data.get("memes", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        logger.warning("Meme catalog has no 'memes' list; ignoring")
        return []
    catalog: List[MemeTemplate] = []
    seen = set()
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.warning("Skipping malformed meme entry: %r", entry)
            continue
        meme_id = str(entry["id"])
        if meme_id in seen:
            logger.warning("Duplicate meme id %s; keeping the first", meme_id)
            continue
        seen.add(meme_id)
        catalog.append(MemeTemplate(
            id=meme_id,
            name=str(entry.get("name") or meme_id),
            path=str(entry.get("path") or ""),
            expression=str(entry.get("expression") or ""),
            key_landmarks=as_landmark_array(entry.get("landmarks")),
        ))
    return catalog


def parse_profile(expression_id: str, entry: Any) -> Optional[ReferenceProfile]:
    """One ReferenceProfile from its JSON entry, or None if the ratios are unusable."""
    if not isinstance(entry, dict):
        return None
    try:
        mouth = float(entry["mouthRatio"])
        eye = float(entry["eyeRatio"])
        brow = float(entry["eyebrowDistance"])
    except (KeyError, TypeError, ValueError):
        return None
    if not all(np.isfinite(v) and v >= 0 for v in (mouth, eye, brow)):
        return None
    expressions = entry.get("expressions") or {}
    if not isinstance(expressions, dict):
        expressions = {}
    return ReferenceProfile(
        expression_id=expression_id,
        mouth_ratio=mouth,
        eye_ratio=eye,
        eyebrow_distance=brow,
        expressions={str(k): float(v) for k, v in expressions.items() if isinstance(v, (int, float))},
        landmarks=as_landmark_array(entry.get("landmarks")),
        timestamp=entry.get("timestamp"),
    )


def parse_profiles(data: Any) -> Dict[str, ReferenceProfile]:
    """Expression id -> profile, in file order. Malformed entries are skipped."""
    if not isinstance(data, dict):
        logger.warning("Calibration data is not an object; ignoring")
        return {}
    profiles: Dict[str, ReferenceProfile] = {}
    for expression_id, entry in data.items():
        profile = parse_profile(str(expression_id), entry)
        if profile is None:
            logger.warning("Skipping malformed calibration profile: %s", expression_id)
            continue
        profiles[str(expression_id)] = profile
    return profiles


# ---------------------------------------------------------------------------
# Loading (URL -> file -> empty)
# ---------------------------------------------------------------------------

def _fetch_json(url: Optional[str], path: Optional[str]) -> Any:
    # 1) URL
    if url:
        try:
            r = requests.get(url, timeout=config.REFERENCE_FETCH_TIMEOUT_SEC)
            if r.ok:
                return r.json()
            logger.warning("Fetching %s returned HTTP %s", url, r.status_code)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Fetching %s failed: %s", url, e)

    # 2) File
    if path and os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Reading %s failed: %s", path, e)

    # 3) Nothing
    return None


def load_catalog(url: Optional[str] = None, path: Optional[str] = None) -> List[MemeTemplate]:
    """Load the meme catalog from MEME_CATALOG_URL, else MEME_CATALOG_PATH, else []."""
    data = _fetch_json(
        url if url is not None else config.MEME_CATALOG_URL,
        path if path is not None else config.MEME_CATALOG_PATH,
    )
    return parse_catalog(data) if data is not None else []


def load_profiles(url: Optional[str] = None, path: Optional[str] = None) -> Dict[str, ReferenceProfile]:
    """Load calibration profiles from FACIAL_DATA_URL, else FACIAL_DATA_PATH, else {}."""
    data = _fetch_json(
        url if url is not None else config.FACIAL_DATA_URL,
        path if path is not None else config.FACIAL_DATA_PATH,
    )
    return parse_profiles(data) if data is not None else {}


def initialize_reference_store(
    catalog: Optional[List[MemeTemplate]] = None,
    profiles: Optional[Dict[str, ReferenceProfile]] = None,
    template_cache_path: Optional[str] = None,
) -> ReferenceStore:
    """
    Load everything the matcher needs and return it as one object.

    Callers hold on to the returned store and pass it to GameSession; there is
    no module-level "loaded" flag to check.
    """
    from utils.template_builder import load_template_cache

    if catalog is None:
        catalog = load_catalog()
    if profiles is None:
        profiles = load_profiles()
    store = ReferenceStore(catalog, profiles)

    cache_path = template_cache_path if template_cache_path is not None else config.TEMPLATE_CACHE_PATH
    cached = load_template_cache(cache_path, store.catalog) if cache_path else None
    if cached:
        store.attach_templates(cached)

    logger.info(
        "Reference data ready: %d memes, %d profiles, %d templates",
        len(store.catalog), len(store.profiles), len(store.templates()),
    )
    return store
