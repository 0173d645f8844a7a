"""
Flask routes for Expression Unlock.

Handles the meme catalog, config, game session start/stop/restart/state,
browser-pushed detector samples and frames, unlock captures, calibration
capture/save, and meme template upload.
"""

import logging
from typing import Optional

from flask import Blueprint, Flask, jsonify, request

import config
from game_session import GameSession, SessionSettings
from utils.calibration import CalibrationRecorder
from utils.detector_interface import DetectionSample, PushedSampleDetector, ReplayDetector
from utils.helpers import build_config_response, parse_bool
from utils.reference_store import ReferenceStore, initialize_reference_store
from utils.template_builder import save_template_cache, templates_from_samples
from utils.video_source_handler import VideoSourceHandler, VideoSourceType, set_browser_frame_from_bytes

logger = logging.getLogger(__name__)

# Create a blueprint for better organization
api = Blueprint('api', __name__)

# Global game session (one player per server)
game_session: Optional[GameSession] = None

# Reference data, loaded on first use and reloaded after calibration is saved
_reference_store: Optional[ReferenceStore] = None

# Calibration captures in progress
_calibration: Optional[CalibrationRecorder] = None

SOURCE_TYPES = ("browser", "replay", "webcam", "file")


def _get_reference_store() -> ReferenceStore:
    """Return the reference store, loading it on first call (lazy init)."""
    global _reference_store
    if _reference_store is None:
        _reference_store = initialize_reference_store()
    return _reference_store


def _get_calibration() -> CalibrationRecorder:
    global _calibration
    if _calibration is None:
        store = _get_reference_store()
        _calibration = CalibrationRecorder([m.id for m in store.catalog], store.profiles)
    return _calibration


def _json_body() -> Optional[dict]:
    if not request.is_json:
        return None
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _no_session():
    return jsonify({"error": "Game not started"}), 404


# ============================================================================
# Catalog & Config
# ============================================================================

@api.route("/memes", methods=["GET"])
def get_memes():
    """
    Get the meme catalog.

    Returns:
        JSON: {"memes": [{"id", "name", "path", "expression"}, ...]}
    """
    store = _get_reference_store()
    return jsonify({"memes": [m.to_dict() for m in store.catalog]})


@api.route("/config/all", methods=["GET"])
def get_all_config():
    """
    Get all configuration in one endpoint (used by the frontend on load).
    """
    return jsonify(build_config_response(_reference_store))


# ============================================================================
# Game Session Routes
# ============================================================================

@api.route("/game/start", methods=["POST"])
def start_game():
    """
    Start a game session.

    Request Body:
        {
            "sourceType": "browser" | "replay" | "webcam" | "file",
            "sourcePath": "replay samples JSON, or video file for 'file'",
            "easyMode": false
        }

    For every source except "replay", detector samples are pushed by the
    browser to POST /game/detection. The source only decides where unlock
    snapshots come from.
    """
    global game_session

    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400

    source_type_str = str(data.get("sourceType", "browser")).lower()
    source_path = data.get("sourcePath")
    if source_type_str not in SOURCE_TYPES:
        return jsonify({
            "error": f"Invalid sourceType: {source_type_str}. Must be one of {', '.join(SOURCE_TYPES)}"
        }), 400
    if source_path is not None and not isinstance(source_path, str):
        return jsonify({"error": "sourcePath must be a string"}), 400
    easy_mode = parse_bool(data.get("easyMode"), config.EASY_MODE)

    if game_session:
        game_session.stop()
        game_session = None

    frame_source = None
    try:
        if source_type_str == "replay":
            detector = ReplayDetector.from_file(source_path or config.REPLAY_SAMPLES_PATH)
        else:
            detector = PushedSampleDetector(max_age_sec=config.SAMPLE_MAX_AGE_SEC)
            frame_source = VideoSourceHandler()
            if not frame_source.initialize_source(VideoSourceType(source_type_str), source_path):
                return jsonify({"error": "Failed to open video source. Check sourcePath."}), 500
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except OSError as e:
        return jsonify({"error": "Failed to load replay samples", "details": str(e)}), 400

    settings = SessionSettings.from_config()
    settings.easy_mode = easy_mode
    game_session = GameSession(_get_reference_store(), detector, frame_source=frame_source, settings=settings)
    game_session.start()
    return jsonify({
        "success": True,
        "message": f"Game started from {source_type_str}",
        "detector": detector.get_name(),
        "easyMode": easy_mode,
    })


@api.route("/game/stop", methods=["POST"])
def stop_game():
    """Stop the game loop. Captures stay readable until the next start."""
    global game_session
    if game_session:
        game_session.stop()
    return jsonify({"success": True, "message": "Game stopped"})


@api.route("/game/restart", methods=["POST"])
def restart_game():
    if not game_session:
        return _no_session()
    game_session.restart()
    return jsonify({"success": True, "state": game_session.get_state()})


@api.route("/game/challenge/start", methods=["POST"])
def start_challenge():
    """Start the challenge timer; holds count from now on."""
    if not game_session:
        return _no_session()
    game_session.start_challenge()
    return jsonify({"success": True, "state": game_session.get_state()})


@api.route("/game/easy-mode", methods=["PUT"])
def set_easy_mode():
    """Body: {"easyMode": bool}. Only allowed before the challenge starts."""
    if not game_session:
        return _no_session()
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400
    easy_mode = parse_bool(data.get("easyMode"))
    if easy_mode is None:
        return jsonify({"error": "Missing or invalid 'easyMode'"}), 400
    try:
        game_session.set_easy_mode(easy_mode)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"easyMode": game_session.easy_mode})


@api.route("/game/detection", methods=["POST"])
def push_detection():
    """
    Receive one face-api.js result from the browser.
    Body: {"landmarks": {"positions": [{x, y}, ...]} | [[x, y], ...], "expressions": {...}}
    """
    if not game_session:
        return _no_session()
    if not isinstance(game_session.detector, PushedSampleDetector):
        return jsonify({"error": "Session does not accept pushed samples"}), 409
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400
    sample = game_session.detector.push_dict(data)
    return jsonify({"accepted": True, "faceDetected": sample.has_face})


@api.route("/game/frame", methods=["POST"])
def push_frame():
    """
    Receive a single frame from the browser for unlock snapshots.
    Expects raw JPEG/PNG body or multipart/form-data with an image file.
    """
    data = request.get_data()
    if not data and request.files:
        f = request.files.get("frame") or request.files.get("image") or next(iter(request.files.values()), None)
        if f:
            data = f.read()
    if not data:
        return jsonify({"error": "No image data"}), 400
    if not set_browser_frame_from_bytes(data):
        return jsonify({"error": "Invalid or unsupported image"}), 400
    return "", 204


@api.route("/game/state", methods=["GET"])
def get_game_state():
    if not game_session:
        return _no_session()
    return jsonify(game_session.get_state())


@api.route("/game/captures", methods=["GET"])
def get_captures():
    """Unlock captures: [{expressionId, expressionName, imageData, memePath, similarity}]."""
    if not game_session:
        return jsonify({"captures": []})
    return jsonify({"captures": game_session.captures.get_captures()})


# ============================================================================
# Calibration & Templates
# ============================================================================

@api.route("/calibration/capture", methods=["POST"])
def calibration_capture():
    """
    Record the player's face for one expression.
    Body: {"expressionId": "smirk", "sample": {<face-api.js result>}}
    """
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400
    sample = DetectionSample.from_dict(data.get("sample"))
    try:
        profile = _get_calibration().capture(str(data.get("expressionId") or ""), sample)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"success": True, "profile": profile.to_dict()})


@api.route("/calibration/profiles", methods=["GET"])
def calibration_profiles():
    recorder = _get_calibration()
    return jsonify({"profiles": recorder.to_dict(), "missing": recorder.missing()})


@api.route("/calibration/save", methods=["POST"])
def calibration_save():
    """Write captured profiles; the next game start uses them."""
    global _reference_store, _calibration
    try:
        count = _get_calibration().save(config.CALIBRATION_OUTPUT_PATH)
    except OSError as e:
        return jsonify({"error": "Failed to save calibration", "details": str(e)}), 500
    # Reload so the next session picks up the new profiles
    _reference_store = None
    _calibration = None
    return jsonify({"success": True, "saved": count, "path": config.CALIBRATION_OUTPUT_PATH})


@api.route("/templates", methods=["POST"])
def upload_templates():
    """
    Build meme templates from detector results the browser computed on each meme image.
    Body: {"samples": {"<memeId>": {<face-api.js result>}, ...}}
    """
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be JSON"}), 400
    samples = data.get("samples")
    if not isinstance(samples, dict):
        return jsonify({"error": "Missing 'samples' object"}), 400
    store = _get_reference_store()
    templates = templates_from_samples(store.catalog, samples)
    attached = store.attach_templates(templates)
    cached = save_template_cache(config.TEMPLATE_CACHE_PATH, store.templates())
    return jsonify({"success": True, "attached": attached, "cached": cached})


@api.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


@api.errorhandler(500)
def internal_error(e):
    logger.error("Unhandled error: %s", e)
    return jsonify({"error": "Internal server error"}), 500


def register_routes(app: Flask) -> None:
    """Attach the API blueprint to the app."""
    app.register_blueprint(api)
