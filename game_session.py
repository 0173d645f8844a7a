"""
Game Session.

Orchestrates one play-through: detector sample -> expression match -> hold
accounting -> unlock (snapshot, game state, capture store) -> callbacks.

Pipeline per cycle (~10 Hz):
  read latest detector sample → match against reference data → if the
  challenge timer is running, advance the hold for the matched expression →
  on a completed hold, capture the current frame, record the unlock and check
  the win condition → notify listeners (progress, unlock, match).

The session is the single owner of mutable game state. HTTP handlers only push
samples into the detector or read snapshots taken under the session lock.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import config
from services.capture_store import CaptureStore
from utils.detector_interface import DetectionSample, ExpressionDetectorInterface
from utils.expression_matcher import ExpressionMatcher, MatchResult, MatchSettings
from utils.frame_capture import capture_frame_png
from utils.hold_tracker import HoldSettings, HoldTracker, HoldUpdate
from utils.reference_store import ReferenceStore
from utils.unlock_state import GameState, new_game_state, record_unlock, required_unlock_count, start_timer

logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class SessionSettings:
    poll_interval_sec: float = 0.1
    easy_mode: bool = False
    match: MatchSettings = field(default_factory=MatchSettings)
    hold: HoldSettings = field(default_factory=HoldSettings)

    @classmethod
    def from_config(cls) -> "SessionSettings":
        return cls(
            poll_interval_sec=config.POLL_INTERVAL_SEC,
            easy_mode=config.EASY_MODE,
            match=MatchSettings.from_config(),
            hold=HoldSettings.from_config(),
        )


@dataclass
class SessionState:
    """Outcome of one cycle."""
    game: GameState
    match: Optional[MatchResult]
    hold: HoldUpdate
    face_detected: bool
    timestamp_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game": self.game.to_dict(),
            "match": self.match.to_dict() if self.match else None,
            "progress": {"expressionId": self.hold.expression_id, "progress": self.hold.progress},
            "unlocked": self.hold.unlock.expression_id if self.hold.unlock else None,
            "faceDetected": self.face_detected,
            "timestampMs": self.timestamp_ms,
        }


class GameSession:
    """
    Main game loop.

    Usage:
        session = GameSession(store, PushedSampleDetector(), on_unlock=notify)
        session.start()
        session.start_challenge()
        ...
        session.stop()

    step() runs one cycle synchronously and is what the background thread
    calls; tests drive it directly with explicit timestamps.
    """

    def __init__(
        self,
        store: ReferenceStore,
        detector: ExpressionDetectorInterface,
        frame_source=None,
        settings: Optional[SessionSettings] = None,
        clock: Optional[Callable[[], float]] = None,
        on_progress: Optional[Callable[[str, float], None]] = None,
        on_unlock: Optional[Callable[[str, Optional[bytes], MatchResult], None]] = None,
        on_match: Optional[Callable[[Optional[MatchResult]], None]] = None,
        capture_store: Optional[CaptureStore] = None,
        rng=None,
    ):
        """
        Args:
            store: Reference data (catalog, profiles, templates)
            detector: Source of DetectionSamples
            frame_source: Object with read_frame() -> (ok, frame), used for
                          unlock snapshots (e.g. VideoSourceHandler)
            settings: Thresholds and loop cadence; defaults to config
            clock: Returns the current time in milliseconds (monotonic)
            on_progress / on_unlock / on_match: Listener callbacks. Exceptions
                          they raise are logged, never propagated.
        """
        self.store = store
        self.detector = detector
        self.frame_source = frame_source
        self.settings = settings or SessionSettings.from_config()
        self._clock = clock or _monotonic_ms
        self.on_progress = on_progress
        self.on_unlock = on_unlock
        self.on_match = on_match
        self.captures = capture_store or CaptureStore()

        self.matcher = ExpressionMatcher(store, self.settings.match, rng=rng)
        self.hold_tracker = HoldTracker(self.settings.hold)
        self.game_state: GameState = new_game_state()
        self.easy_mode = bool(self.settings.easy_mode)
        self.last_state: Optional[SessionState] = None

        self.lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start the polling thread. Returns False if it is already running."""
        if self.is_running:
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="game-session", daemon=True)
        self._thread.start()
        logger.info(
            "Game session started: detector=%s, easy_mode=%s, memes=%d, profiles=%d",
            self.detector.get_name(), self.easy_mode, len(self.store.catalog), len(self.store.profiles),
        )
        return True

    def stop(self) -> None:
        """Stop the loop and release the frame source. No cycle runs after this returns."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=2.0)
        self._thread = None
        if self.frame_source is not None:
            self.frame_source.release()
        self.detector.close()
        logger.info("Game session stopped")

    def start_challenge(self) -> None:
        """Start the challenge timer; holds are tracked from now on."""
        now = self._clock()
        with self.lock:
            self.game_state = start_timer(self.game_state, now)

    def restart(self) -> None:
        """Fresh game: unlocks, holds, timer and captures all cleared."""
        with self.lock:
            self.game_state = new_game_state()
            self.hold_tracker.reset()
            self.last_state = None
            # Same lock as step(), so an in-flight unlock lands before the clear
            self.captures.clear_captures()

    def set_easy_mode(self, easy_mode: bool) -> None:
        """
        Raises:
            ValueError: the challenge timer has already started
        """
        with self.lock:
            if self.game_state.timer_started:
                raise ValueError("Easy mode can only be changed before the challenge starts")
            self.easy_mode = bool(easy_mode)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _read_frame(self, frame):
        if frame is not None:
            return frame
        if self.frame_source is None:
            return None
        ok, frame = self.frame_source.read_frame()
        return frame if ok else None

    def step(self, sample: Optional[DetectionSample], frame=None, now_ms: Optional[float] = None) -> SessionState:
        """
        Run one cycle on a detector sample.

        Args:
            sample: Detector result for this frame (None = no face)
            frame: BGR frame for the unlock snapshot; read from frame_source if omitted
            now_ms: Cycle time in ms; defaults to the session clock
        """
        now = self._clock() if now_ms is None else now_ms
        face = sample is not None and sample.has_face
        result = self.matcher.match(sample.expressions, sample.landmarks) if face else None

        image_png = None
        with self.lock:
            game = self.game_state
            if game.timer_started and not game.completed:
                hold = self.hold_tracker.update(result, now, game.unlocked)
            elif result is not None:
                hold = HoldUpdate(result.expression_id, self.hold_tracker.progress(result.expression_id))
            else:
                hold = HoldUpdate()

            if hold.unlock is not None:
                image_png = capture_frame_png(self._read_frame(frame))
                self.game_state = record_unlock(game, hold.unlock.expression_id, now, self.easy_mode)
                self.captures.add_capture(hold.unlock.expression_id, image_png, hold.unlock.match)
                logger.info(
                    "Unlocked %s (%d/%d)",
                    hold.unlock.expression_id, len(self.game_state.unlocked), required_unlock_count(self.easy_mode),
                )
                if self.game_state.completed and not game.completed:
                    logger.info("Challenge complete in %.0f ms", self.game_state.completion_time_ms)

            state = SessionState(self.game_state, result, hold, face, now)
            self.last_state = state

        self._notify(state, image_png)
        return state

    def _notify(self, state: SessionState, image_png: Optional[bytes]) -> None:
        if self.on_match:
            try:
                self.on_match(state.match)
            except Exception as e:
                logger.error("Error in match callback: %s", e)
        if self.on_progress and state.hold.expression_id is not None:
            try:
                self.on_progress(state.hold.expression_id, state.hold.progress)
            except Exception as e:
                logger.error("Error in progress callback: %s", e)
        if self.on_unlock and state.hold.unlock is not None:
            try:
                self.on_unlock(state.hold.unlock.expression_id, image_png, state.hold.unlock.match)
            except Exception as e:
                logger.error("Error in unlock callback: %s", e)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.step(self.detector.detect())
            except Exception:
                logger.exception("Error in game loop")
            if self._stop_event.wait(self.settings.poll_interval_sec):
                break

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_state(self) -> Dict[str, Any]:
        """Thread-safe snapshot for GET /game/state."""
        with self.lock:
            last = self.last_state
            return {
                "running": self.is_running,
                "detector": self.detector.get_name(),
                "easyMode": self.easy_mode,
                "requiredUnlocks": required_unlock_count(self.easy_mode),
                "game": self.game_state.to_dict(),
                "holds": self.hold_tracker.snapshot(),
                "lastCycle": last.to_dict() if last else None,
                "captureCount": len(self.captures),
            }
