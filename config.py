"""
=============================================================================
CONFIGURATION FOR EXPRESSION UNLOCK (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the game in one place. Other
modules read from it; nothing is hard-wired elsewhere. Values come from the
environment (e.g. your .env file or system variables) so the same code can run
with different reference data or thresholds without edits.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Reference data   — Where the meme catalog, personalized calibration
                        profiles, and cached meme templates live (file or URL).
  2. Matching         — Similarity floors and geometric thresholds used by the
                        expression matcher.
  3. Hold / unlock    — How long an expression must be held, the similarity
                        needed to count, and how many unlocks win the game.
  4. Game loop        — Polling cadence and detector-sample freshness.
  5. Server           — Host, port, debug mode, and log level.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables override everything.
  - If an env var is not set, we use the calibrated default.
  - The thresholds below were tuned on real webcam sessions; change them only
    together with the calibration data.
=============================================================================
"""

import os
from typing import Optional


# ============================================================================
# REFERENCE DATA (meme catalog, calibration profiles, template cache)
# ============================================================================
# Each resource can be fetched from a URL or read from a local JSON file.
# URL wins when both are set; see utils/reference_store.py.
# ----------------------------------------------------------------------------
_DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")

MEME_CATALOG_URL: Optional[str] = os.getenv("MEME_CATALOG_URL") or None
MEME_CATALOG_PATH: str = os.getenv("MEME_CATALOG_PATH", os.path.join(_DATA_DIR, "memes.json"))

FACIAL_DATA_URL: Optional[str] = os.getenv("FACIAL_DATA_URL") or None
FACIAL_DATA_PATH: str = os.getenv("FACIAL_DATA_PATH", os.path.join(_DATA_DIR, "facialdata.json"))

# Precomputed meme landmark templates (written by utils/template_builder.py)
TEMPLATE_CACHE_PATH: str = os.getenv("TEMPLATE_CACHE_PATH", os.path.join(_DATA_DIR, "meme_templates.json"))

# Where calibration captures are written by POST /calibration/save
CALIBRATION_OUTPUT_PATH: str = os.getenv("CALIBRATION_OUTPUT_PATH", FACIAL_DATA_PATH)

REFERENCE_FETCH_TIMEOUT_SEC: float = float(os.getenv("REFERENCE_FETCH_TIMEOUT_SEC", "5"))

# ============================================================================
# MATCHING (utils/expression_matcher.py)
# ============================================================================
# PERSONALIZED_MIN_SIMILARITY: below this, a personalized match is "too
#   uncertain" and no match is reported.
# EYEBROW_RAISE_THRESHOLD: raw pixel distance between brow centre and eye top.
#   Not normalised by face size, so it depends on camera resolution.
# WIDE_EYE_EAR_THRESHOLD: eye aspect ratio above which eyes count as wide open.
# TEMPLATE_DISTANCE_SCALE: similarity = 100 * exp(-distance / scale).
# ----------------------------------------------------------------------------
PERSONALIZED_MIN_SIMILARITY: float = float(os.getenv("PERSONALIZED_MIN_SIMILARITY", "40"))
EYEBROW_RAISE_THRESHOLD: float = float(os.getenv("EYEBROW_RAISE_THRESHOLD", "25"))
WIDE_EYE_EAR_THRESHOLD: float = float(os.getenv("WIDE_EYE_EAR_THRESHOLD", "0.25"))
TEMPLATE_DISTANCE_SCALE: float = float(os.getenv("TEMPLATE_DISTANCE_SCALE", "10"))

# ============================================================================
# HOLD / UNLOCK (utils/hold_tracker.py, utils/unlock_state.py)
# ============================================================================
HOLD_DURATION_MS: float = float(os.getenv("HOLD_DURATION_MS", "3000"))
HOLD_SIMILARITY_THRESHOLD: float = float(os.getenv("HOLD_SIMILARITY_THRESHOLD", "80"))

REQUIRED_UNLOCKS_EASY: int = int(os.getenv("REQUIRED_UNLOCKS_EASY", "2"))
REQUIRED_UNLOCKS_NORMAL: int = int(os.getenv("REQUIRED_UNLOCKS_NORMAL", "8"))
EASY_MODE: bool = os.getenv("EASY_MODE", "false").lower() == "true"

# ============================================================================
# GAME LOOP (game_session.py)
# ============================================================================
# POLL_INTERVAL_SEC: fixed delay between cycles (~10 Hz).
# SAMPLE_MAX_AGE_SEC: a browser-pushed detector sample older than this is
#   treated as "no face" (browser tab hidden, network stall).
# REPLAY_SAMPLES_PATH: recorded detector samples for sourceType "replay".
# ----------------------------------------------------------------------------
POLL_INTERVAL_SEC: float = float(os.getenv("POLL_INTERVAL_SEC", "0.1"))
SAMPLE_MAX_AGE_SEC: float = float(os.getenv("SAMPLE_MAX_AGE_SEC", "1.0"))
REPLAY_SAMPLES_PATH: str = os.getenv("REPLAY_SAMPLES_PATH", os.path.join(_DATA_DIR, "replay_samples.json"))

# ============================================================================
# SERVER
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = os.getenv("FLASK_DEBUG", "false").lower() == "true"
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


def required_unlocks(easy_mode: bool) -> int:
    """Number of unlocked expressions needed to finish the challenge."""
    return REQUIRED_UNLOCKS_EASY if easy_mode else REQUIRED_UNLOCKS_NORMAL


def warn_missing_config() -> None:
    """
    Print warnings when reference data is missing. Call from app startup.
    Does not raise: the game still runs on rule-based matching without
    calibration data.
    """
    import sys
    missing = []
    if not MEME_CATALOG_URL and not os.path.isfile(MEME_CATALOG_PATH):
        missing.append(f"meme catalog ({MEME_CATALOG_PATH})")
    if not FACIAL_DATA_URL and not os.path.isfile(FACIAL_DATA_PATH):
        missing.append(f"calibration profiles ({FACIAL_DATA_PATH})")
    if missing:
        print("Config warning: reference data not found. Some features may be disabled:", ", ".join(missing), file=sys.stderr)


def get_game_config() -> dict:
    """Game settings for GET /config/all."""
    return {
        "holdDurationMs": HOLD_DURATION_MS,
        "holdSimilarityThreshold": HOLD_SIMILARITY_THRESHOLD,
        "personalizedMinSimilarity": PERSONALIZED_MIN_SIMILARITY,
        "eyebrowRaiseThreshold": EYEBROW_RAISE_THRESHOLD,
        "wideEyeEarThreshold": WIDE_EYE_EAR_THRESHOLD,
        "requiredUnlocksEasy": REQUIRED_UNLOCKS_EASY,
        "requiredUnlocksNormal": REQUIRED_UNLOCKS_NORMAL,
        "easyMode": EASY_MODE,
        "pollIntervalSec": POLL_INTERVAL_SEC,
    }
