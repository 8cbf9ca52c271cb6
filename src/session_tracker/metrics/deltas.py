"""
Delta and window computations over snapshot series.

Pure functions over DerivedMetrics records. A None anywhere means
"unknown": deltas are never inferred across missing values and empty
windows average to None, never zero.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..core.models import DerivedMetrics

# Team metrics eligible for "new high / new low" records.
RECORDABLE_METRICS = (
    "wins",
    "losses",
    "goals",
    "assists",
    "saves",
    "shots",
    "win_rate",
    "goals_per_game",
    "shots_per_game",
    "saves_per_game",
    "assists_per_game",
    "shot_accuracy",
)

COUNTING_STATS = ("goals", "assists", "saves", "shots")
SHARED_OUTCOMES = ("wins", "losses", "matches_played")


def numeric_delta(baseline: Optional[float], latest: Optional[float]) -> Optional[float]:
    """latest - baseline when both are known, else None."""
    if baseline is None or latest is None:
        return None
    return latest - baseline


def session_win_rate(
    wins: Optional[float],
    losses: Optional[float],
    matches_played: Optional[float],
) -> Optional[float]:
    """
    Win rate over a session's deltas.

    Uses wins / (wins + losses) when that sum is positive, falling back to
    wins / matches_played.
    """
    if wins is None:
        return None
    if losses is not None and wins + losses > 0:
        return wins / (wins + losses)
    if matches_played is not None and matches_played > 0:
        return wins / matches_played
    return None


def _per_game(total: Optional[float], matches_played: Optional[float]) -> Optional[float]:
    if total is None or matches_played is None or matches_played <= 0:
        return None
    return total / matches_played


# =============================================================================
# Player deltas
# =============================================================================


@dataclass
class PlayerDelta:
    """Change in one player's metrics between baseline and latest snapshot."""

    wins: Optional[float] = None
    losses: Optional[float] = None
    goals: Optional[float] = None
    assists: Optional[float] = None
    saves: Optional[float] = None
    shots: Optional[float] = None
    matches_played: Optional[float] = None
    rating: Optional[float] = None
    win_rate: Optional[float] = None
    losses_derived: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_player_delta(
    baseline: Optional[DerivedMetrics],
    latest: Optional[DerivedMetrics],
    focus_playlist_id: Optional[int] = None,
) -> PlayerDelta:
    """
    Delta between a player's baseline and latest metrics.

    Matches played and rating come from the focus playlist when both
    endpoints carry it. Missing losses fall back to matches_played - wins
    when that is non-negative, and the result is flagged as derived.
    """
    if baseline is None or latest is None:
        return PlayerDelta()

    delta = PlayerDelta(
        wins=numeric_delta(baseline.wins, latest.wins),
        losses=numeric_delta(baseline.losses, latest.losses),
        goals=numeric_delta(baseline.goals, latest.goals),
        assists=numeric_delta(baseline.assists, latest.assists),
        saves=numeric_delta(baseline.saves, latest.saves),
        shots=numeric_delta(baseline.shots, latest.shots),
        losses_derived=baseline.losses_derived or latest.losses_derived,
    )

    base_playlist = baseline.playlist(focus_playlist_id)
    latest_playlist = latest.playlist(focus_playlist_id)
    if base_playlist is not None and latest_playlist is not None:
        delta.matches_played = numeric_delta(
            base_playlist.matches_played, latest_playlist.matches_played
        )
        delta.rating = numeric_delta(base_playlist.rating, latest_playlist.rating)
    else:
        delta.matches_played = numeric_delta(baseline.matches_played, latest.matches_played)
        delta.rating = numeric_delta(baseline.rating, latest.rating)

    if delta.losses is None and delta.wins is not None and delta.matches_played is not None:
        computed = delta.matches_played - delta.wins
        if computed >= 0:
            delta.losses = computed
            delta.losses_derived = True

    delta.win_rate = session_win_rate(delta.wins, delta.losses, delta.matches_played)
    return delta


# =============================================================================
# Team aggregate
# =============================================================================


@dataclass
class TeamAggregate:
    """Team-level totals built from per-player deltas."""

    wins: Optional[float] = None
    losses: Optional[float] = None
    matches_played: Optional[float] = None
    goals: Optional[float] = None
    assists: Optional[float] = None
    saves: Optional[float] = None
    shots: Optional[float] = None
    win_rate: Optional[float] = None
    goals_per_game: Optional[float] = None
    shots_per_game: Optional[float] = None
    saves_per_game: Optional[float] = None
    assists_per_game: Optional[float] = None
    shot_accuracy: Optional[float] = None
    losses_derived: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def aggregate_team(deltas: Iterable[PlayerDelta]) -> TeamAggregate:
    """
    Combine per-player deltas into a team aggregate.

    Counting stats are summed. Wins, losses and matches played are shared
    outcomes between teammates, so the most complete observation (the
    maximum) is taken rather than the sum.
    """
    team = TeamAggregate()
    for delta in deltas:
        for name in COUNTING_STATS:
            value = getattr(delta, name)
            if value is not None:
                current = getattr(team, name)
                setattr(team, name, value if current is None else current + value)
        for name in SHARED_OUTCOMES:
            value = getattr(delta, name)
            if value is not None:
                current = getattr(team, name)
                setattr(team, name, value if current is None else max(current, value))
        team.losses_derived = team.losses_derived or delta.losses_derived

    team.win_rate = session_win_rate(team.wins, team.losses, team.matches_played)
    team.goals_per_game = _per_game(team.goals, team.matches_played)
    team.shots_per_game = _per_game(team.shots, team.matches_played)
    team.saves_per_game = _per_game(team.saves, team.matches_played)
    team.assists_per_game = _per_game(team.assists, team.matches_played)
    if team.goals is not None and team.shots is not None and team.shots > 0:
        team.shot_accuracy = team.goals / team.shots
    return team


# =============================================================================
# Trend windows
# =============================================================================


@dataclass
class TrendWindow:
    """Per-metric averages for the earlier and later halves of a series."""

    midpoint: int
    first_half: dict[str, Optional[float]] = field(default_factory=dict)
    second_half: dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _read(point: Any, metric: str) -> Optional[float]:
    if isinstance(point, Mapping):
        value = point.get(metric)
    else:
        value = getattr(point, metric, None)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def average(values: Iterable[Optional[float]]) -> Optional[float]:
    nums = [v for v in values if v is not None]
    if not nums:
        return None
    return sum(nums) / len(nums)


def trend_windows(series: Sequence[Any], metrics: Iterable[str]) -> TrendWindow:
    """
    Split a time-ordered series at its midpoint and average each half.

    The first half is the earlier one and always holds at least one point
    when the series is non-empty. ``series`` items may be mappings or objects
    exposing the metrics as attributes.
    """
    midpoint = max(1, len(series) // 2)
    first, second = series[:midpoint], series[midpoint:]
    window = TrendWindow(midpoint=midpoint)
    for metric in metrics:
        window.first_half[metric] = average(_read(p, metric) for p in first)
        window.second_half[metric] = average(_read(p, metric) for p in second)
    return window


# =============================================================================
# Records
# =============================================================================


def compute_records(
    history: Iterable[Any],
    current: Any,
    metrics: Sequence[str] = RECORDABLE_METRICS,
) -> dict[str, str]:
    """
    Metrics on which ``current`` sets a new team high or low.

    A record must strictly beat every prior value for the metric; metrics
    with no history or no current value never produce one.

    Returns:
        Mapping of metric name to "high" or "low"
    """
    history = list(history)
    records: dict[str, str] = {}
    for metric in metrics:
        value = _read(current, metric)
        if value is None:
            continue
        prior = [v for v in (_read(entry, metric) for entry in history) if v is not None]
        if not prior:
            continue
        if value > max(prior):
            records[metric] = "high"
        elif value < min(prior):
            records[metric] = "low"
    return records
