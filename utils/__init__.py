"""
Utilities package for Expression Unlock.

This package contains the per-frame pipeline: landmark geometry and
normalisation, reference data, expression matching, hold tracking, unlock
state, detector adapters, frame sources, template preprocessing and
calibration.
"""

from .landmark_geometry import GeometricRatios, compute_ratios, classify_mouth_opening
from .reference_store import MemeTemplate, ReferenceProfile, ReferenceStore, initialize_reference_store
from .expression_matcher import ExpressionMatcher, MatchResult, MatchSettings, match
from .hold_tracker import HoldTracker, HoldSettings, HoldUpdate, UnlockEvent
from .unlock_state import GameState, new_game_state, record_unlock
from .detector_interface import (
    DetectionSample,
    ExpressionDetectorInterface,
    PushedSampleDetector,
    ReplayDetector,
)
from .video_source_handler import VideoSourceHandler, VideoSourceType

__all__ = [
    'GeometricRatios',
    'compute_ratios',
    'classify_mouth_opening',
    'MemeTemplate',
    'ReferenceProfile',
    'ReferenceStore',
    'initialize_reference_store',
    'ExpressionMatcher',
    'MatchResult',
    'MatchSettings',
    'match',
    'HoldTracker',
    'HoldSettings',
    'HoldUpdate',
    'UnlockEvent',
    'GameState',
    'new_game_state',
    'record_unlock',
    'DetectionSample',
    'ExpressionDetectorInterface',
    'PushedSampleDetector',
    'ReplayDetector',
    'VideoSourceHandler',
    'VideoSourceType',
]
