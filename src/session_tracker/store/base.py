"""
Session, player and snapshot records plus the store interface.

The engine owns Session/Player objects for their lifetime and writes
through a SnapshotStore. Snapshots are immutable once written.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..core.models import DerivedMetrics
from ..core.types import GameMode, parse_mode


class SessionState(str, Enum):
    """Lifecycle state of a tracked session."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    POLLING = "polling"
    ENDED = "ended"


@dataclass(frozen=True)
class MatchCursor:
    """Last match a player was seen to have played."""

    last_match_id: Optional[str] = None
    last_match_at: Optional[datetime] = None
    last_match_count: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.last_match_id is None and self.last_match_at is None


@dataclass
class Player:
    """A tracked player within one session."""

    id: int
    session_id: int
    platform: str
    handle: str
    cursor: MatchCursor = field(default_factory=MatchCursor)


@dataclass
class Session:
    """A live tracking session for a small group of players."""

    id: int
    mode: GameMode
    polling_interval_seconds: int
    players: list[Player] = field(default_factory=list)
    team_id: Optional[int] = None
    is_active: bool = False
    is_ended: bool = False
    match_index: int = 0
    state: SessionState = SessionState.IDLE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None

    def __post_init__(self):
        self.mode = parse_mode(self.mode)
        if self.polling_interval_seconds is None or self.polling_interval_seconds <= 0:
            raise ValueError("polling_interval_seconds must be positive")

    def get_player(self, player_id: int) -> Optional[Player]:
        return next((p for p in self.players if p.id == player_id), None)


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time capture of one player's stats. match_index 0 is the baseline."""

    session_id: int
    player_id: int
    captured_at: datetime
    match_index: Optional[int]
    raw: Any
    derived: DerivedMetrics
    id: Optional[int] = None

    @property
    def is_baseline(self) -> bool:
        return self.match_index == 0


def roster_key(players: list[tuple[str, str]]) -> str:
    """Order- and case-insensitive identity of a (platform, handle) roster."""
    return "|".join(
        sorted(f"{platform.strip().lower()}:{handle.strip().lower()}" for platform, handle in players)
    )


@dataclass
class Team:
    """A saved roster. Sessions played by the same roster in the same mode share a team."""

    id: int
    name: str
    mode: GameMode
    players: list[tuple[str, str]] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.mode = parse_mode(self.mode)
        self.players = [(platform, handle) for platform, handle in self.players]

    @property
    def roster_key(self) -> str:
        return roster_key(self.players)


@dataclass(frozen=True)
class SessionTeamStats:
    """
    Team result of one ended session.

    ``deltas`` maps player id to that player's delta dict, ``team`` is the
    team aggregate dict and ``records`` the highs/lows it set against the
    team's earlier sessions.
    """

    session_id: int
    team_id: int
    created_at: datetime
    focus_playlist_id: Optional[int]
    deltas: dict[int, dict[str, Any]]
    team: dict[str, Any]
    records: dict[str, str]
    id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "team_id": self.team_id,
            "created_at": self.created_at.isoformat(),
            "focus_playlist_id": self.focus_playlist_id,
            "deltas": self.deltas,
            "team": self.team,
            "records": self.records,
        }


class SnapshotStore(ABC):
    """
    Read/write contract the polling engine needs from persistence.

    Implementations: InMemorySnapshotStore (tests, ephemeral runs) and
    SqliteSnapshotStore (CLI).
    """

    @abstractmethod
    def create_session(
        self,
        mode: GameMode,
        polling_interval_seconds: int,
        players: list[tuple[str, str]],
        team_id: Optional[int] = None,
    ) -> Session:
        """Persist a new session with its (platform, handle) players, assigning ids."""
        ...

    @abstractmethod
    def save_session(self, session: Session) -> None:
        """Persist session state (active/ended flags, match index, ended_at)."""
        ...

    @abstractmethod
    def get_session(self, session_id: int) -> Optional[Session]:
        """Load a session with its players and their match cursors."""
        ...

    @abstractmethod
    def insert_snapshot(
        self,
        session_id: int,
        player_id: int,
        captured_at: datetime,
        match_index: Optional[int],
        raw: Any,
        derived: DerivedMetrics,
    ) -> Snapshot:
        ...

    @abstractmethod
    def get_baseline_snapshot(self, player_id: int) -> Optional[Snapshot]:
        """Earliest snapshot captured for the player."""
        ...

    @abstractmethod
    def get_latest_snapshot(self, player_id: int) -> Optional[Snapshot]:
        ...

    @abstractmethod
    def list_recent_snapshots(self, session_id: int, limit: int) -> list[Snapshot]:
        """Most recent snapshots for a session, newest first."""
        ...

    @abstractmethod
    def list_player_snapshots(self, session_id: int, player_id: int) -> list[Snapshot]:
        """Full series for one player within a session, oldest first."""
        ...

    @abstractmethod
    def update_player_match_state(
        self,
        player_id: int,
        last_match_id: Optional[str],
        last_match_at: Optional[datetime],
        last_match_count: Optional[int],
    ) -> None:
        ...

    # -- Teams ---------------------------------------------------------------

    @abstractmethod
    def create_team(self, name: str, mode: GameMode, players: list[tuple[str, str]]) -> Team:
        ...

    @abstractmethod
    def get_team(self, team_id: int) -> Optional[Team]:
        ...

    @abstractmethod
    def list_teams(self) -> list[Team]:
        """All teams, newest first."""
        ...

    def find_team_by_roster(
        self,
        mode: GameMode,
        players: list[tuple[str, str]],
    ) -> Optional[Team]:
        """Newest team with the same mode and roster, ignoring order and case."""
        mode = parse_mode(mode)
        key = roster_key(players)
        return next(
            (team for team in self.list_teams() if team.mode == mode and team.roster_key == key),
            None,
        )

    @abstractmethod
    def insert_team_stats(
        self,
        session_id: int,
        team_id: int,
        created_at: datetime,
        focus_playlist_id: Optional[int],
        deltas: dict[int, dict[str, Any]],
        team: dict[str, Any],
        records: dict[str, str],
    ) -> SessionTeamStats:
        ...

    @abstractmethod
    def get_session_team_stats(self, session_id: int) -> Optional[SessionTeamStats]:
        ...

    @abstractmethod
    def list_team_stats(self, team_id: int) -> list[SessionTeamStats]:
        """Per-session results for a team, newest first."""
        ...

    def close(self) -> None:
        return None
