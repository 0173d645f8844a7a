"""
Services package for Expression Unlock.

This package contains session-scoped stores shared between the game loop and
the HTTP handlers:
- Capture store: player snapshots taken at each unlock
"""

from .capture_store import CaptureStore

__all__ = ['CaptureStore']
