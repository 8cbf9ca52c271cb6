"""
SQLite-backed snapshot store.

Provides a persistent implementation of SnapshotStore for the CLI, with
sessions, players (including their match cursors), snapshots, teams and
per-session team results in a single database file. Raw payloads and derived metrics are stored as JSON
text columns.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any, Iterator, Optional

from ..core.models import DerivedMetrics
from ..core.types import GameMode
from .base import (
    MatchCursor,
    Player,
    Session,
    SessionState,
    SessionTeamStats,
    Snapshot,
    SnapshotStore,
    Team,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS teams (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    mode TEXT NOT NULL,
    created_at TEXT NOT NULL,
    players_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mode TEXT NOT NULL,
    created_at TEXT NOT NULL,
    polling_interval_seconds INTEGER NOT NULL,
    team_id INTEGER REFERENCES teams(id),
    is_active INTEGER NOT NULL DEFAULT 0,
    is_ended INTEGER NOT NULL DEFAULT 0,
    match_index INTEGER NOT NULL DEFAULT 0,
    state TEXT NOT NULL DEFAULT 'idle',
    ended_at TEXT
);

CREATE TABLE IF NOT EXISTS players (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES sessions(id),
    platform TEXT NOT NULL,
    handle TEXT NOT NULL,
    last_match_id TEXT,
    last_match_at TEXT,
    last_match_count INTEGER
);

CREATE TABLE IF NOT EXISTS snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES sessions(id),
    player_id INTEGER NOT NULL REFERENCES players(id),
    captured_at TEXT NOT NULL,
    match_index INTEGER,
    raw_json TEXT NOT NULL,
    derived_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS session_team_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL UNIQUE REFERENCES sessions(id),
    team_id INTEGER NOT NULL REFERENCES teams(id),
    created_at TEXT NOT NULL,
    focus_playlist_id INTEGER,
    deltas_json TEXT NOT NULL,
    team_json TEXT NOT NULL,
    records_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_player ON snapshots(player_id, captured_at);
CREATE INDEX IF NOT EXISTS idx_snapshots_session ON snapshots(session_id, captured_at);
CREATE INDEX IF NOT EXISTS idx_team_stats_team ON session_team_stats(team_id, created_at);
"""

# Columns added after the first schema version: (table, column, definition)
COLUMN_MIGRATIONS = (
    ("sessions", "team_id", "INTEGER REFERENCES teams(id)"),
)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteSnapshotStore(SnapshotStore):
    """
    SQLite snapshot store.

    Pass ":memory:" for a throwaway database (tests).
    """

    def __init__(self, db_path: str | Path = "session_tracker.sqlite"):
        self.db_path = str(db_path)
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = RLock()

    # -- Connection management -----------------------------------------------

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection and ensure the schema exists."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        conn.execute("PRAGMA foreign_keys = ON")
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

        # Return dicts instead of tuples
        conn.row_factory = sqlite3.Row
        conn.executescript(SCHEMA)
        self._migrate(conn)
        return conn

    @staticmethod
    def _migrate(conn: sqlite3.Connection) -> None:
        """Add columns missing from databases created by older versions."""
        for table, column, definition in COLUMN_MIGRATIONS:
            columns = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
            if column not in columns:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._connection is None:
            self._connection = self._create_connection()
        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Execute queries within a transaction.

        Automatically commits on success, rolls back on failure.
        """
        with self._lock:
            conn = self.connection
            cur = conn.cursor()
            try:
                cur.execute("BEGIN")
                yield cur
                cur.execute("COMMIT")
            except Exception:
                cur.execute("ROLLBACK")
                raise
            finally:
                cur.close()

    def execute(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            return self.connection.execute(query, params)

    def fetchone(self, query: str, params: tuple = ()) -> Optional[dict[str, Any]]:
        """Execute a query and fetch one result as a dict."""
        with self._lock:
            row = self.connection.execute(query, params).fetchone()
        return dict(row) if row else None

    def fetchall(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a query and fetch all results as dicts."""
        with self._lock:
            rows = self.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    # -- Sessions ------------------------------------------------------------

    def create_session(
        self,
        mode: GameMode,
        polling_interval_seconds: int,
        players: list[tuple[str, str]],
        team_id: Optional[int] = None,
    ) -> Session:
        session = Session(
            id=0,
            mode=mode,
            polling_interval_seconds=polling_interval_seconds,
            team_id=team_id,
        )
        with self.transaction() as cur:
            cur.execute(
                """
                INSERT INTO sessions (mode, created_at, polling_interval_seconds, team_id, state)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    session.mode.value,
                    _to_iso(session.created_at),
                    session.polling_interval_seconds,
                    session.team_id,
                    session.state.value,
                ),
            )
            session.id = cur.lastrowid
            for platform, handle in players:
                cur.execute(
                    "INSERT INTO players (session_id, platform, handle) VALUES (?, ?, ?)",
                    (session.id, platform, handle),
                )
                session.players.append(
                    Player(id=cur.lastrowid, session_id=session.id, platform=platform, handle=handle)
                )
        return session

    def save_session(self, session: Session) -> None:
        self.execute(
            """
            UPDATE sessions
            SET is_active = ?, is_ended = ?, match_index = ?, state = ?, ended_at = ?
            WHERE id = ?
            """,
            (
                int(session.is_active),
                int(session.is_ended),
                session.match_index,
                session.state.value,
                _to_iso(session.ended_at),
                session.id,
            ),
        )

    def get_session(self, session_id: int) -> Optional[Session]:
        row = self.fetchone("SELECT * FROM sessions WHERE id = ?", (session_id,))
        if row is None:
            return None
        players = self.fetchall(
            "SELECT * FROM players WHERE session_id = ? ORDER BY id", (session_id,)
        )
        return Session(
            id=row["id"],
            mode=row["mode"],
            polling_interval_seconds=row["polling_interval_seconds"],
            team_id=row["team_id"],
            is_active=bool(row["is_active"]),
            is_ended=bool(row["is_ended"]),
            match_index=row["match_index"],
            state=SessionState(row["state"]),
            created_at=_from_iso(row["created_at"]),
            ended_at=_from_iso(row["ended_at"]),
            players=[
                Player(
                    id=p["id"],
                    session_id=p["session_id"],
                    platform=p["platform"],
                    handle=p["handle"],
                    cursor=MatchCursor(
                        last_match_id=p["last_match_id"],
                        last_match_at=_from_iso(p["last_match_at"]),
                        last_match_count=p["last_match_count"],
                    ),
                )
                for p in players
            ],
        )

    def update_player_match_state(
        self,
        player_id: int,
        last_match_id: Optional[str],
        last_match_at: Optional[datetime],
        last_match_count: Optional[int],
    ) -> None:
        self.execute(
            """
            UPDATE players
            SET last_match_id = ?, last_match_at = ?, last_match_count = ?
            WHERE id = ?
            """,
            (last_match_id, _to_iso(last_match_at), last_match_count, player_id),
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
        cur = self.execute(
            """
            INSERT INTO snapshots (session_id, player_id, captured_at, match_index, raw_json, derived_json)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                player_id,
                _to_iso(captured_at),
                match_index,
                json.dumps(raw),
                derived.model_dump_json(),
            ),
        )
        return Snapshot(
            id=cur.lastrowid,
            session_id=session_id,
            player_id=player_id,
            captured_at=captured_at,
            match_index=match_index,
            raw=raw,
            derived=derived,
        )

    @staticmethod
    def _to_snapshot(row: dict[str, Any]) -> Snapshot:
        return Snapshot(
            id=row["id"],
            session_id=row["session_id"],
            player_id=row["player_id"],
            captured_at=_from_iso(row["captured_at"]),
            match_index=row["match_index"],
            raw=json.loads(row["raw_json"]),
            derived=DerivedMetrics.model_validate_json(row["derived_json"]),
        )

    def get_baseline_snapshot(self, player_id: int) -> Optional[Snapshot]:
        row = self.fetchone(
            "SELECT * FROM snapshots WHERE player_id = ? ORDER BY captured_at ASC, id ASC LIMIT 1",
            (player_id,),
        )
        return self._to_snapshot(row) if row else None

    def get_latest_snapshot(self, player_id: int) -> Optional[Snapshot]:
        row = self.fetchone(
            "SELECT * FROM snapshots WHERE player_id = ? ORDER BY captured_at DESC, id DESC LIMIT 1",
            (player_id,),
        )
        return self._to_snapshot(row) if row else None

    def list_recent_snapshots(self, session_id: int, limit: int) -> list[Snapshot]:
        if limit <= 0:
            return []
        rows = self.fetchall(
            """
            SELECT * FROM snapshots WHERE session_id = ?
            ORDER BY captured_at DESC, id DESC
            LIMIT ?
            """,
            (session_id, limit),
        )
        return [self._to_snapshot(row) for row in rows]

    def list_player_snapshots(self, session_id: int, player_id: int) -> list[Snapshot]:
        rows = self.fetchall(
            """
            SELECT * FROM snapshots WHERE session_id = ? AND player_id = ?
            ORDER BY captured_at ASC, id ASC
            """,
            (session_id, player_id),
        )
        return [self._to_snapshot(row) for row in rows]

    # -- Teams ---------------------------------------------------------------

    @staticmethod
    def _to_team(row: dict[str, Any]) -> Team:
        return Team(
            id=row["id"],
            name=row["name"],
            mode=row["mode"],
            players=[tuple(p) for p in json.loads(row["players_json"])],
            created_at=_from_iso(row["created_at"]),
        )

    def create_team(self, name: str, mode: GameMode, players: list[tuple[str, str]]) -> Team:
        team = Team(id=0, name=name, mode=mode, players=list(players))
        cur = self.execute(
            "INSERT INTO teams (name, mode, created_at, players_json) VALUES (?, ?, ?, ?)",
            (team.name, team.mode.value, _to_iso(team.created_at), json.dumps(team.players)),
        )
        team.id = cur.lastrowid
        return team

    def get_team(self, team_id: int) -> Optional[Team]:
        row = self.fetchone("SELECT * FROM teams WHERE id = ?", (team_id,))
        return self._to_team(row) if row else None

    def list_teams(self) -> list[Team]:
        rows = self.fetchall("SELECT * FROM teams ORDER BY created_at DESC, id DESC")
        return [self._to_team(row) for row in rows]

    @staticmethod
    def _to_team_stats(row: dict[str, Any]) -> SessionTeamStats:
        return SessionTeamStats(
            id=row["id"],
            session_id=row["session_id"],
            team_id=row["team_id"],
            created_at=_from_iso(row["created_at"]),
            focus_playlist_id=row["focus_playlist_id"],
            # JSON object keys are strings; player ids are ints
            deltas={int(pid): delta for pid, delta in json.loads(row["deltas_json"]).items()},
            team=json.loads(row["team_json"]),
            records=json.loads(row["records_json"]),
        )

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
        cur = self.execute(
            """
            INSERT INTO session_team_stats
                (session_id, team_id, created_at, focus_playlist_id, deltas_json, team_json, records_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                team_id,
                _to_iso(created_at),
                focus_playlist_id,
                json.dumps(deltas),
                json.dumps(team),
                json.dumps(records),
            ),
        )
        return SessionTeamStats(
            id=cur.lastrowid,
            session_id=session_id,
            team_id=team_id,
            created_at=created_at,
            focus_playlist_id=focus_playlist_id,
            deltas=dict(deltas),
            team=dict(team),
            records=dict(records),
        )

    def get_session_team_stats(self, session_id: int) -> Optional[SessionTeamStats]:
        row = self.fetchone("SELECT * FROM session_team_stats WHERE session_id = ?", (session_id,))
        return self._to_team_stats(row) if row else None

    def list_team_stats(self, team_id: int) -> list[SessionTeamStats]:
        rows = self.fetchall(
            "SELECT * FROM session_team_stats WHERE team_id = ? ORDER BY created_at DESC, id DESC",
            (team_id,),
        )
        return [self._to_team_stats(row) for row in rows]
