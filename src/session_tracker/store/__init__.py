"""Session and snapshot persistence."""

from .base import (
    MatchCursor,
    Player,
    Session,
    SessionState,
    SessionTeamStats,
    Snapshot,
    SnapshotStore,
    Team,
    roster_key,
)
from .memory import InMemorySnapshotStore
from .sqlite import SqliteSnapshotStore

__all__ = [
    "MatchCursor",
    "Player",
    "Session",
    "SessionState",
    "SessionTeamStats",
    "Snapshot",
    "SnapshotStore",
    "Team",
    "roster_key",
    "InMemorySnapshotStore",
    "SqliteSnapshotStore",
]
