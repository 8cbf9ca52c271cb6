"""
Session stats service: per-player deltas, team aggregates, trends and records.

Reads snapshots from a SnapshotStore and feeds them through the pure
functions in metrics.deltas. The CLI report command calls this instead of
touching the store directly.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from ..core.models import DerivedMetrics
from ..core.types import get_mode_config
from ..metrics.deltas import (
    RECORDABLE_METRICS,
    PlayerDelta,
    TeamAggregate,
    TrendWindow,
    aggregate_team,
    compute_player_delta,
    compute_records,
    trend_windows,
)
from ..store.base import Session, SessionTeamStats, SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_TREND_METRICS = (
    "rating",
    "win_rate",
    "shot_accuracy_pct",
    "avg_shots_per_game",
    "avg_saves_per_game",
)

TEAM_TREND_METRICS = (
    "win_rate",
    "goals_per_game",
    "shots_per_game",
    "saves_per_game",
    "shot_accuracy",
)


@dataclass
class TeamSummary:
    """Deltas for every player in a session plus the team aggregate."""

    session_id: int
    focus_playlist_id: Optional[int]
    players: dict[int, PlayerDelta] = field(default_factory=dict)
    team: TeamAggregate = field(default_factory=TeamAggregate)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "focus_playlist_id": self.focus_playlist_id,
            "players": {pid: delta.to_dict() for pid, delta in self.players.items()},
            "team": self.team.to_dict(),
        }


def trend_point(derived: DerivedMetrics, focus_playlist_id: Optional[int]) -> dict[str, Optional[float]]:
    """Flatten one snapshot's metrics into the values trend windows average."""
    playlist = derived.playlist(focus_playlist_id)
    averages = derived.playlist_average(focus_playlist_id)
    rating = playlist.rating if playlist and playlist.rating is not None else derived.rating
    return {
        "rating": rating,
        "win_rate": derived.win_rate,
        "goal_shot_ratio": derived.goal_shot_ratio,
        "shot_accuracy_pct": averages.shot_accuracy_pct if averages else None,
        "avg_shots_per_game": averages.avg_shots_per_game if averages else None,
        "avg_saves_per_game": averages.avg_saves_per_game if averages else None,
    }


class SessionStatsService:
    """Read-side computations over a session's snapshots."""

    def __init__(self, store: SnapshotStore):
        self.store = store

    @staticmethod
    def focus_playlist_id(session: Session) -> Optional[int]:
        mode_config = get_mode_config(session.mode)
        return mode_config.playlist_id if mode_config else None

    def player_deltas(self, session: Session) -> dict[int, PlayerDelta]:
        """
        Baseline-to-latest delta for each player.

        Players without a baseline yet get an all-None delta.
        """
        focus = self.focus_playlist_id(session)
        deltas: dict[int, PlayerDelta] = {}
        for player in session.players:
            baseline = self.store.get_baseline_snapshot(player.id)
            latest = self.store.get_latest_snapshot(player.id)
            if baseline is None:
                logger.debug(f"No baseline yet for {player.handle} in session {session.id}")
            deltas[player.id] = compute_player_delta(
                baseline.derived if baseline else None,
                latest.derived if latest else None,
                focus,
            )
        return deltas

    def team_summary(self, session: Session) -> TeamSummary:
        deltas = self.player_deltas(session)
        return TeamSummary(
            session_id=session.id,
            focus_playlist_id=self.focus_playlist_id(session),
            players=deltas,
            team=aggregate_team(deltas.values()),
        )

    def player_trends(
        self,
        session: Session,
        player_id: int,
        metrics: Sequence[str] = DEFAULT_TREND_METRICS,
    ) -> TrendWindow:
        """
        Early vs. late averages over one player's snapshot series.

        Raises:
            KeyError: If the player is not part of the session
        """
        if session.get_player(player_id) is None:
            raise KeyError(f"Player {player_id} is not in session {session.id}")
        focus = self.focus_playlist_id(session)
        snapshots = self.store.list_player_snapshots(session.id, player_id)
        points = [trend_point(snapshot.derived, focus) for snapshot in snapshots]
        return trend_windows(points, metrics)

    # -- Team history ------------------------------------------------------

    def team_history(self, team_id: int) -> list[SessionTeamStats]:
        """Stored per-session team results, oldest first."""
        return list(reversed(self.store.list_team_stats(team_id)))

    def team_records(
        self,
        team_id: int,
        aggregate: TeamAggregate | Mapping[str, Any],
        metrics: Sequence[str] = RECORDABLE_METRICS,
    ) -> dict[str, str]:
        """New team highs/lows of ``aggregate`` against the team's stored sessions."""
        history = [stats.team for stats in self.store.list_team_stats(team_id)]
        return compute_records(history, aggregate, metrics)

    def team_trends(
        self,
        team_id: int,
        metrics: Sequence[str] = TEAM_TREND_METRICS,
    ) -> TrendWindow:
        """Early vs. late averages over the team's session aggregates."""
        return trend_windows([stats.team for stats in self.team_history(team_id)], metrics)

    def record_session_stats(
        self,
        session: Session,
        created_at: Optional[datetime] = None,
    ) -> Optional[SessionTeamStats]:
        """
        Persist the team result of an ended session.

        Records are computed against the team's earlier sessions before the
        new row is written. Sessions without a team, or whose result is
        already stored, are left alone.

        Returns:
            The stored result, or None when nothing was written
        """
        if session.team_id is None:
            return None
        if self.store.get_session_team_stats(session.id) is not None:
            logger.debug(f"Team stats for session {session.id} already stored")
            return None

        summary = self.team_summary(session)
        records = self.team_records(session.team_id, summary.team)
        stats = self.store.insert_team_stats(
            session_id=session.id,
            team_id=session.team_id,
            created_at=created_at or datetime.now(timezone.utc),
            focus_playlist_id=summary.focus_playlist_id,
            deltas={pid: delta.to_dict() for pid, delta in summary.players.items()},
            team=summary.team.to_dict(),
            records=records,
        )
        if records:
            logger.info(f"Session {session.id} set team records: {records}")
        return stats
