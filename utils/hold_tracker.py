"""
Hold-progress accumulator.

An expression unlocks once the player has held it, at or above the similarity
threshold, for HOLD_DURATION_MS of accumulated time. Each expression id is in
one of three states:

    idle          no window open (last_update_ms is None)
    accumulating  window open; time since the previous cycle is added
    unlocked      done for this session; never fires again

A dip (no match, low similarity, or a different expression) closes the window
but keeps the accumulated time, so holding the face again resumes progress.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import config


@dataclass
class HoldSettings:
    hold_duration_ms: float = 3000.0
    similarity_threshold: float = 80.0

    @classmethod
    def from_config(cls) -> "HoldSettings":
        return cls(
            hold_duration_ms=config.HOLD_DURATION_MS,
            similarity_threshold=config.HOLD_SIMILARITY_THRESHOLD,
        )


@dataclass
class HoldState:
    accumulated_ms: float = 0.0
    last_update_ms: Optional[float] = None
    unlocked: bool = False


@dataclass
class UnlockEvent:
    """Emitted once per expression id when its hold completes."""
    expression_id: str
    match: Any


@dataclass
class HoldUpdate:
    """Result of one update() call."""
    expression_id: Optional[str] = None
    progress: float = 0.0
    accumulated_ms: float = 0.0
    unlock: Optional[UnlockEvent] = None


class HoldTracker:
    """
    Per-expression hold accounting for one game session.

    Not thread-safe on its own; GameSession calls it under its lock.
    """

    def __init__(self, settings: Optional[HoldSettings] = None):
        self.settings = settings or HoldSettings.from_config()
        self._states: Dict[str, HoldState] = {}
        self._active_id: Optional[str] = None

    def _state(self, expression_id: str) -> HoldState:
        state = self._states.get(expression_id)
        if state is None:
            state = HoldState()
            self._states[expression_id] = state
        return state

    def _go_idle(self) -> None:
        if self._active_id is not None:
            self._states[self._active_id].last_update_ms = None
            self._active_id = None

    def progress(self, expression_id: str) -> float:
        """Fraction of the hold completed, in [0, 1]."""
        state = self._states.get(expression_id)
        if state is None:
            return 0.0
        if state.unlocked:
            return 1.0
        duration = self.settings.hold_duration_ms
        if duration <= 0:
            return 1.0
        return min(state.accumulated_ms / duration, 1.0)

    def is_unlocked(self, expression_id: str) -> bool:
        state = self._states.get(expression_id)
        return bool(state and state.unlocked)

    def update(self, match: Any, now_ms: float, unlocked_ids: Iterable[str] = ()) -> HoldUpdate:
        """
        Advance hold accounting by one cycle.

        Args:
            match: MatchResult for this frame, or None
            now_ms: Current time in milliseconds (monotonic)
            unlocked_ids: Ids already unlocked upstream (game state)

        Returns:
            HoldUpdate with the matched id's progress and, at most once per id,
            an UnlockEvent.
        """
        if match is None:
            self._go_idle()
            return HoldUpdate()

        expression_id = match.expression_id
        unlocked_upstream = expression_id in set(unlocked_ids)

        if (
            match.similarity < self.settings.similarity_threshold
            or unlocked_upstream
            or self.is_unlocked(expression_id)
        ):
            self._go_idle()
            progress = 1.0 if unlocked_upstream else self.progress(expression_id)
            return HoldUpdate(expression_id, progress, self._state(expression_id).accumulated_ms)

        if expression_id != self._active_id:
            # Switching expressions: old one pauses, new one opens a window
            self._go_idle()
            self._active_id = expression_id

        state = self._state(expression_id)
        if state.last_update_ms is not None:
            state.accumulated_ms += max(0.0, now_ms - state.last_update_ms)
        state.last_update_ms = now_ms

        progress = self.progress(expression_id)
        update = HoldUpdate(expression_id, progress, state.accumulated_ms)
        if progress >= 1.0:
            state.unlocked = True
            state.last_update_ms = None
            self._active_id = None
            update.unlock = UnlockEvent(expression_id, match)
        return update

    def reset(self) -> None:
        """Forget every hold (game restart)."""
        self._states.clear()
        self._active_id = None

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {
            expression_id: {
                "accumulatedMs": state.accumulated_ms,
                "progress": self.progress(expression_id),
                "holding": state.last_update_ms is not None,
                "unlocked": state.unlocked,
            }
            for expression_id, state in self._states.items()
        }
