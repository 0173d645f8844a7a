"""
=============================================================================
EXPRESSION UNLOCK — APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the "front door" of the game server. When you run "python app.py",
a web server starts that the browser game talks to. The server:

  1. Serves the meme catalog and game settings.
  2. Receives face-detection results (landmarks + expression probabilities)
     that the browser computes with face-api.js, once per video frame.
  3. Runs the game loop: matches the player's face to a meme expression,
     tracks how long it is held, and unlocks it after 3 seconds.
  4. Records personalized calibration profiles so matching fits the player.

The actual endpoints are defined in routes.py; the game loop lives in
game_session.py.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - By default the app is at:  http://localhost:5000

CONFIGURATION:
--------------
  - Settings come from the .env file and config.py.
  - Reference data lives in data/ unless MEME_CATALOG_PATH / FACIAL_DATA_PATH
    (or their *_URL variants) point elsewhere.
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before anything else)
# ---------------------------------------------------------------------------
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# ---------------------------------------------------------------------------
# Step 2: Import the web framework and our own modules
# ---------------------------------------------------------------------------
import logging

from flask import Flask
from flask_cors import CORS
from flask_compress import Compress

from routes import register_routes
import config

# ---------------------------------------------------------------------------
# Step 3: Logging and missing-config warnings
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
config.warn_missing_config()


def create_app() -> Flask:
    """
    Create and configure the Flask application.

      - CORS so the browser game can call the API from its dev-server origin.
      - Compression for the larger JSON responses (captures carry base64 PNGs).
      - All URL routes from routes.py.
    """
    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})
    Compress(app)
    register_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    # FLASK_DEBUG: Flask's reloader/debugger. Otherwise Waitress with a few
    # threads so detection pushes and state polling do not queue behind each other.
    if config.FLASK_DEBUG:
        app.run(host=config.FLASK_HOST, port=config.FLASK_PORT, debug=True)
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=6)
