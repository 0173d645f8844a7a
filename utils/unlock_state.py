"""
Unlock / game state reducers.

GameState is immutable; every change returns a new object. The unlocked set
only grows until restart (new_game_state()).
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional

import config


@dataclass(frozen=True)
class GameState:
    unlocked: FrozenSet[str] = field(default_factory=frozenset)
    session_start_ms: Optional[float] = None
    completed: bool = False
    completion_time_ms: Optional[float] = None

    @property
    def timer_started(self) -> bool:
        return self.session_start_ms is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unlocked": {expression_id: True for expression_id in sorted(self.unlocked)},
            "unlockedCount": len(self.unlocked),
            "sessionStartMs": self.session_start_ms,
            "completed": self.completed,
            "completionTimeMs": self.completion_time_ms,
        }


def new_game_state() -> GameState:
    return GameState()


def start_timer(state: GameState, now_ms: float) -> GameState:
    """Start the challenge clock. A running clock is left alone."""
    if state.session_start_ms is not None:
        return state
    return replace(state, session_start_ms=now_ms)


def required_unlock_count(easy_mode: bool) -> int:
    return config.required_unlocks(easy_mode)


def apply_unlock(state: GameState, expression_id: str) -> GameState:
    if expression_id in state.unlocked:
        return state
    return replace(state, unlocked=state.unlocked | {expression_id})


def is_complete(state: GameState, required_count: int) -> bool:
    return len(state.unlocked) >= required_count


def record_unlock(state: GameState, expression_id: str, now_ms: float, easy_mode: bool) -> GameState:
    """
    Add an unlock and check the win condition.

    Completion is recorded once: completion_time_ms is now - session_start_ms,
    or 0 when the timer never started. Later unlocks leave it unchanged.
    """
    state = apply_unlock(state, expression_id)
    if state.completed or not is_complete(state, required_unlock_count(easy_mode)):
        return state
    elapsed = now_ms - state.session_start_ms if state.session_start_ms is not None else 0
    return replace(state, completed=True, completion_time_ms=elapsed)
