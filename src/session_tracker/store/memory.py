"""In-memory snapshot store."""

from __future__ import annotations

from datetime import datetime
from threading import RLock
from typing import Any, Optional

from ..core.models import DerivedMetrics
from ..core.types import GameMode
from .base import MatchCursor, Player, Session, SessionTeamStats, Snapshot, SnapshotStore, Team


class InMemorySnapshotStore(SnapshotStore):
    """Thread-safe, process-local store. Insertion order breaks capture-time ties."""

    def __init__(self):
        self._sessions: dict[int, Session] = {}
        self._cursors: dict[int, MatchCursor] = {}
        self._snapshots: list[Snapshot] = []
        self._teams: dict[int, Team] = {}
        self._team_stats: list[SessionTeamStats] = []
        self._next_session_id = 1
        self._next_player_id = 1
        self._next_snapshot_id = 1
        self._next_team_id = 1
        self._next_team_stats_id = 1
        self._lock = RLock()

    # -- Sessions ------------------------------------------------------------

    def create_session(
        self,
        mode: GameMode,
        polling_interval_seconds: int,
        players: list[tuple[str, str]],
        team_id: Optional[int] = None,
    ) -> Session:
        with self._lock:
            session = Session(
                id=self._next_session_id,
                mode=mode,
                polling_interval_seconds=polling_interval_seconds,
                team_id=team_id,
            )
            self._next_session_id += 1
            for platform, handle in players:
                session.players.append(
                    Player(
                        id=self._next_player_id,
                        session_id=session.id,
                        platform=platform,
                        handle=handle,
                    )
                )
                self._next_player_id += 1
            self._sessions[session.id] = session
            for player in session.players:
                self._cursors[player.id] = player.cursor
        return session

    def save_session(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.id] = session

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                for player in session.players:
                    player.cursor = self._cursors.get(player.id, player.cursor)
            return session

    def get_player_cursor(self, player_id: int) -> Optional[MatchCursor]:
        with self._lock:
            return self._cursors.get(player_id)

    def update_player_match_state(
        self,
        player_id: int,
        last_match_id: Optional[str],
        last_match_at: Optional[datetime],
        last_match_count: Optional[int],
    ) -> None:
        with self._lock:
            self._cursors[player_id] = MatchCursor(
                last_match_id=last_match_id,
                last_match_at=last_match_at,
                last_match_count=last_match_count,
            )

    # -- Snapshots -----------------------------------------------------------

    def insert_snapshot(
        self,
        session_id: int,
        player_id: int,
        captured_at: datetime,
        match_index: Optional[int],
        raw: Any,
        derived: DerivedMetrics,
    ) -> Snapshot:
        with self._lock:
            snapshot = Snapshot(
                id=self._next_snapshot_id,
                session_id=session_id,
                player_id=player_id,
                captured_at=captured_at,
                match_index=match_index,
                raw=raw,
                derived=derived,
            )
            self._next_snapshot_id += 1
            self._snapshots.append(snapshot)
        return snapshot

    def _for_player(self, player_id: int) -> list[Snapshot]:
        rows = [s for s in self._snapshots if s.player_id == player_id]
        return sorted(rows, key=lambda s: (s.captured_at, s.id))

    def get_baseline_snapshot(self, player_id: int) -> Optional[Snapshot]:
        with self._lock:
            rows = self._for_player(player_id)
        return rows[0] if rows else None

    def get_latest_snapshot(self, player_id: int) -> Optional[Snapshot]:
        with self._lock:
            rows = self._for_player(player_id)
        return rows[-1] if rows else None

    def list_recent_snapshots(self, session_id: int, limit: int) -> list[Snapshot]:
        if limit <= 0:
            return []
        with self._lock:
            rows = [s for s in self._snapshots if s.session_id == session_id]
        rows.sort(key=lambda s: (s.captured_at, s.id), reverse=True)
        return rows[:limit]

    def list_player_snapshots(self, session_id: int, player_id: int) -> list[Snapshot]:
        with self._lock:
            rows = [
                s for s in self._snapshots
                if s.session_id == session_id and s.player_id == player_id
            ]
        return sorted(rows, key=lambda s: (s.captured_at, s.id))

    # -- Teams ---------------------------------------------------------------

    def create_team(self, name: str, mode: GameMode, players: list[tuple[str, str]]) -> Team:
        with self._lock:
            team = Team(id=self._next_team_id, name=name, mode=mode, players=list(players))
            self._next_team_id += 1
            self._teams[team.id] = team
        return team

    def get_team(self, team_id: int) -> Optional[Team]:
        with self._lock:
            return self._teams.get(team_id)

    def list_teams(self) -> list[Team]:
        with self._lock:
            teams = list(self._teams.values())
        return sorted(teams, key=lambda t: (t.created_at, t.id), reverse=True)

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
        with self._lock:
            stats = SessionTeamStats(
                id=self._next_team_stats_id,
                session_id=session_id,
                team_id=team_id,
                created_at=created_at,
                focus_playlist_id=focus_playlist_id,
                deltas=dict(deltas),
                team=dict(team),
                records=dict(records),
            )
            self._next_team_stats_id += 1
            self._team_stats.append(stats)
        return stats

    def get_session_team_stats(self, session_id: int) -> Optional[SessionTeamStats]:
        with self._lock:
            return next((s for s in self._team_stats if s.session_id == session_id), None)

    def list_team_stats(self, team_id: int) -> list[SessionTeamStats]:
        with self._lock:
            rows = [s for s in self._team_stats if s.team_id == team_id]
        return sorted(rows, key=lambda s: (s.created_at, s.id), reverse=True)
