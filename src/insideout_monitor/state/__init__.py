"""Entity status persistence and transition detection."""

from insideout_monitor.state.detector import TransitionDetector, classify
from insideout_monitor.state.sql import SqlStatusStore
from insideout_monitor.state.store import EntityLocks, InMemoryStatusStore, StatusStore

__all__ = [
    "EntityLocks",
    "InMemoryStatusStore",
    "SqlStatusStore",
    "StatusStore",
    "TransitionDetector",
    "classify",
]
