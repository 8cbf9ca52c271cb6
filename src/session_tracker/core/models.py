"""
Pydantic models for derived player metrics.

These models are used for:
- The canonical, provider-agnostic shape produced by the metrics extractor
- JSON serialization of snapshots into the store
- Delta and trend computations

Every field is independently nullable: None means "not observable from the
payload", never zero.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


# =============================================================================
# Per-playlist Models
# =============================================================================


class PlaylistStats(BaseModel):
    """Ranked ladder breakdown for one tracked playlist."""

    playlist_id: int
    name: Optional[str] = None
    rating: Optional[float] = None
    tier_name: Optional[str] = None
    division_name: Optional[str] = None
    division_number: Optional[float] = None
    matches_played: Optional[float] = None
    win_streak_type: Optional[str] = None
    win_streak_value: Optional[float] = None
    peak_rating: Optional[float] = None


class PlaylistAverage(BaseModel):
    """Per-game averages for one tracked playlist."""

    playlist_id: int
    avg_goals_per_game: Optional[float] = None
    avg_shots_per_game: Optional[float] = None
    avg_saves_per_game: Optional[float] = None
    avg_assists_per_game: Optional[float] = None
    avg_mvps_per_game: Optional[float] = None
    shot_accuracy_pct: Optional[float] = None
    goals_saves_ratio: Optional[float] = None
    assists_goals_ratio: Optional[float] = None


# =============================================================================
# Derived Metrics
# =============================================================================


class DerivedMetrics(BaseModel):
    """Canonical metrics record for one player at one point in time."""

    last_updated: Optional[str] = None
    current_season: Optional[int] = None

    # Counters
    wins: Optional[float] = None
    losses: Optional[float] = None
    # True when losses was computed as matches_played - wins rather than reported
    losses_derived: bool = False
    matches_played: Optional[float] = None
    goals: Optional[float] = None
    assists: Optional[float] = None
    saves: Optional[float] = None
    shots: Optional[float] = None
    score: Optional[float] = None

    # Ratios
    win_rate: Optional[float] = None
    goal_shot_ratio: Optional[float] = None

    # Ranked ladder
    rating: Optional[float] = None
    rank: Optional[str] = None
    rank_tier_index: Optional[float] = None
    rank_division_index: Optional[float] = None
    rank_points: Optional[float] = None
    rank_icon_url: Optional[str] = None

    avatar_url: Optional[str] = None

    playlists: Optional[dict[int, PlaylistStats]] = None
    playlist_averages: Optional[dict[int, PlaylistAverage]] = None

    @classmethod
    def empty(cls) -> "DerivedMetrics":
        """All-null record for payloads of unrecognized shape."""
        return cls()

    def playlist(self, playlist_id: Optional[int]) -> Optional[PlaylistStats]:
        if playlist_id is None or not self.playlists:
            return None
        return self.playlists.get(playlist_id)

    def playlist_average(self, playlist_id: Optional[int]) -> Optional[PlaylistAverage]:
        if playlist_id is None or not self.playlist_averages:
            return None
        return self.playlist_averages.get(playlist_id)
