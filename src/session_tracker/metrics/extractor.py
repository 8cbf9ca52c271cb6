"""
Metrics extractor. Normalizes raw provider profile payloads into DerivedMetrics.

The provider has shipped more than one payload shape over time. Each shape
gets its own parser returning a DerivedMetrics or None; PAYLOAD_PARSERS is
tried in order and the first match wins:

1. Segmented shape: ``data.segments`` with an "overview" segment plus
   "playlist" / "playlistAverage" segments, every stat wrapped as
   ``{"value": ..., "displayValue": ..., "metadata": {...}}``.
2. Legacy shape: ``stats.overview`` flat counters plus a ``stats.ranked``
   map keyed by playlist name.

Payloads matching neither produce an all-null record. Ladder fields are
suppressed for unranked modes after parsing, whatever the payload says.
"""

from __future__ import annotations

import math
import re
from typing import Any, Callable, Iterable, Optional

from ..core.models import DerivedMetrics, PlaylistAverage, PlaylistStats
from ..core.types import TRACKED_PLAYLIST_IDS, GameMode, get_mode_config

_NON_NUMERIC = re.compile(r"[^0-9.\-]")

# Fields forced to None for modes the provider does not rank.
LADDER_FIELDS = (
    "rating",
    "rank",
    "rank_tier_index",
    "rank_division_index",
    "rank_points",
    "rank_icon_url",
)

# Legacy ranked map keys checked first, in this order.
LEGACY_PREFERRED_PLAYLISTS = ("double", "standard", "duel")


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def to_number(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings ("1,234", "55.2%") to float; None otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value)
        if not cleaned:
            return None
        try:
            num = float(cleaned)
        except ValueError:
            return None
        return num if math.isfinite(num) else None
    return None


def clean_string(value: Any) -> Optional[str]:
    """Trimmed string, or None when not a string or empty after trimming."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def stat_value(stats: Any, *keys: str) -> Optional[float]:
    """
    First numeric value among ``keys`` in a stats mapping.

    Wrapped entries are read from value, displayValue, percentile, then rank;
    flat entries are coerced directly.
    """
    if not isinstance(stats, dict):
        return None
    for key in keys:
        entry = stats.get(key)
        if isinstance(entry, dict):
            for field in ("value", "displayValue", "percentile", "rank"):
                if entry.get(field) is not None:
                    num = to_number(entry[field])
                    if num is not None:
                        return num
                    break
            continue
        num = to_number(entry)
        if num is not None:
            return num
    return None


def stat_string(stats: Any, *keys: str) -> Optional[str]:
    """First non-empty display string among ``keys`` in a stats mapping."""
    if not isinstance(stats, dict):
        return None
    for key in keys:
        entry = stats.get(key)
        if isinstance(entry, dict):
            for field in ("displayValue", "value", "label"):
                text = clean_string(entry.get(field))
                if text:
                    return text
            continue
        text = clean_string(entry)
        if text:
            return text
    return None


def _metadata(stats: Any, key: str) -> dict:
    entry = stats.get(key) if isinstance(stats, dict) else None
    meta = entry.get("metadata") if isinstance(entry, dict) else None
    return meta if isinstance(meta, dict) else {}


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def resolve_losses(
    wins: Optional[float],
    losses: Optional[float],
    matches_played: Optional[float],
) -> tuple[Optional[float], bool]:
    """
    Reported losses, or matches_played - wins when losses is missing.

    Returns (losses, derived). A negative computed value means the provider
    data is inconsistent and yields None rather than a guess.
    """
    if losses is not None:
        return losses, False
    if wins is None or matches_played is None:
        return None, False
    computed = matches_played - wins
    if computed < 0:
        return None, False
    return computed, True


def compute_win_rate(
    wins: Optional[float],
    losses: Optional[float],
    matches_played: Optional[float],
) -> Optional[float]:
    if wins is not None and losses is not None and wins + losses > 0:
        return wins / (wins + losses)
    if wins is not None and matches_played is not None and matches_played > 0:
        return wins / matches_played
    return None


def rank_points(tier_index: Optional[float], division_index: Optional[float]) -> Optional[float]:
    """Ladder points: tier * 10 + division (division defaults to 0)."""
    if tier_index is None:
        return None
    return tier_index * 10 + (division_index or 0)


def _playlist_id(attributes: Any, *keys: str) -> Optional[int]:
    attributes = _as_dict(attributes)
    for key in keys:
        num = to_number(attributes.get(key))
        if num is not None:
            return int(num)
    return None


# ---------------------------------------------------------------------------
# Segmented payloads
# ---------------------------------------------------------------------------


def build_playlist_stats(segment: dict) -> Optional[PlaylistStats]:
    """Ladder breakdown for a "playlist" segment on the tracked allow-list."""
    playlist_id = _playlist_id(segment.get("attributes"), "playlistId", "playlist")
    if playlist_id is None or playlist_id not in TRACKED_PLAYLIST_IDS:
        return None
    stats = _as_dict(segment.get("stats"))
    return PlaylistStats(
        playlist_id=playlist_id,
        name=clean_string(_as_dict(segment.get("metadata")).get("name")),
        rating=stat_value(stats, "rating"),
        tier_name=stat_string(stats, "tier") or clean_string(_metadata(stats, "tier").get("name")),
        division_name=(
            stat_string(stats, "division")
            or clean_string(_metadata(stats, "division").get("name"))
        ),
        division_number=stat_value(stats, "division"),
        matches_played=stat_value(stats, "matchesPlayed"),
        win_streak_type=clean_string(_metadata(stats, "winStreak").get("type")),
        win_streak_value=stat_value(stats, "winStreak"),
        peak_rating=stat_value(stats, "peakRating"),
    )


def build_playlist_average(segment: dict) -> Optional[PlaylistAverage]:
    """Per-game averages for a "playlistAverage" segment on the tracked allow-list."""
    playlist_id = _playlist_id(segment.get("attributes"), "playlist", "playlistId")
    if playlist_id is None or playlist_id not in TRACKED_PLAYLIST_IDS:
        return None
    stats = _as_dict(segment.get("stats"))
    return PlaylistAverage(
        playlist_id=playlist_id,
        avg_goals_per_game=stat_value(stats, "avgGoalsPerGame"),
        avg_shots_per_game=stat_value(stats, "avgShotsPerGame"),
        avg_saves_per_game=stat_value(stats, "avgSavesPerGame"),
        avg_assists_per_game=stat_value(stats, "avgAssistsPerGame"),
        avg_mvps_per_game=stat_value(stats, "avgMVPsPerGame"),
        shot_accuracy_pct=stat_value(stats, "goalsShotsRatio"),
        goals_saves_ratio=stat_value(stats, "goalsSavesRatio"),
        assists_goals_ratio=stat_value(stats, "assistsGoalsRatio"),
    )


def parse_segmented_payload(payload: Any, mode: Optional[str] = None) -> Optional[DerivedMetrics]:
    data = _as_dict(_as_dict(payload).get("data"))
    segments = data.get("segments")
    if not isinstance(segments, list):
        return None
    segments = [s for s in segments if isinstance(s, dict)]

    overview_segment = next((s for s in segments if s.get("type") == "overview"), None)
    overview = _as_dict(overview_segment.get("stats")) if overview_segment else None

    mode_config = get_mode_config(mode)
    playlist_name = mode_config.playlist_name if mode_config else None
    playlist_segment = None
    if playlist_name:
        playlist_segment = next(
            (
                s for s in segments
                if s.get("type") == "playlist"
                and _as_dict(s.get("metadata")).get("name") == playlist_name
            ),
            None,
        )

    if overview is None and playlist_segment is None:
        return None

    playlists: dict[int, PlaylistStats] = {}
    averages: dict[int, PlaylistAverage] = {}
    for segment in segments:
        if segment.get("type") == "playlist":
            stats = build_playlist_stats(segment)
            if stats:
                playlists[stats.playlist_id] = stats
        elif segment.get("type") == "playlistAverage":
            avg = build_playlist_average(segment)
            if avg:
                averages[avg.playlist_id] = avg

    playlist_stats = _as_dict(playlist_segment.get("stats")) if playlist_segment else None

    def preferred(key: str) -> Optional[float]:
        value = stat_value(playlist_stats, key)
        return value if value is not None else stat_value(overview, key)

    wins = preferred("wins")
    matches_played = preferred("matchesPlayed")
    losses, losses_derived = resolve_losses(wins, preferred("losses"), matches_played)

    metrics = DerivedMetrics(
        wins=wins,
        losses=losses,
        losses_derived=losses_derived,
        matches_played=matches_played,
        goals=stat_value(overview, "goals"),
        assists=stat_value(overview, "assists"),
        saves=stat_value(overview, "saves"),
        shots=stat_value(overview, "shots"),
        score=stat_value(overview, "score"),
        win_rate=compute_win_rate(wins, losses, matches_played),
        goal_shot_ratio=stat_value(overview, "goalShotRatio"),
        avatar_url=clean_string(_as_dict(data.get("platformInfo")).get("avatarUrl")),
        playlists=playlists or None,
        playlist_averages=averages or None,
    )

    metadata = _as_dict(data.get("metadata"))
    last_updated = _as_dict(metadata.get("lastUpdated")).get("value")
    metrics.last_updated = last_updated if isinstance(last_updated, str) else None
    current_season = metadata.get("currentSeason")
    if isinstance(current_season, int) and not isinstance(current_season, bool):
        metrics.current_season = current_season

    if playlist_stats is not None:
        tier_index = stat_value(playlist_stats, "tier")
        division_index = stat_value(playlist_stats, "division")
        tier_name = (
            stat_string(playlist_stats, "tier")
            or clean_string(_metadata(playlist_stats, "tier").get("name"))
        )
        division_name = (
            stat_string(playlist_stats, "division")
            or clean_string(_metadata(playlist_stats, "division").get("name"))
        )
        metrics.rating = stat_value(playlist_stats, "rating")
        metrics.rank_tier_index = tier_index
        metrics.rank_division_index = division_index
        metrics.rank_points = rank_points(tier_index, division_index)
        if tier_name:
            metrics.rank = f"{tier_name} {division_name}" if division_name else tier_name
        metrics.rank_icon_url = (
            clean_string(_metadata(playlist_stats, "tier").get("iconUrl"))
            or clean_string(_metadata(playlist_stats, "rating").get("iconUrl"))
        )

    return metrics


# ---------------------------------------------------------------------------
# Legacy payloads
# ---------------------------------------------------------------------------


def _ordered_ranked_playlists(ranked: dict) -> list[Any]:
    ordered = [ranked[key] for key in LEGACY_PREFERRED_PLAYLISTS if key in ranked]
    for value in ranked.values():
        if not any(value is seen for seen in ordered):
            ordered.append(value)
    return ordered


def parse_legacy_payload(payload: Any, mode: Optional[str] = None) -> Optional[DerivedMetrics]:
    payload = _as_dict(payload)
    stats = _as_dict(payload.get("stats"))
    overview = stats.get("overview")
    if not isinstance(overview, dict):
        return None

    wins = to_number(overview.get("wins"))
    matches_played = to_number(stats.get("totalMatchesPlayed"))
    losses, losses_derived = resolve_losses(wins, to_number(overview.get("losses")), matches_played)

    metrics = DerivedMetrics(
        wins=wins,
        losses=losses,
        losses_derived=losses_derived,
        matches_played=matches_played,
        goals=to_number(overview.get("goals")),
        assists=to_number(overview.get("assists")),
        saves=to_number(overview.get("saves")),
        shots=to_number(overview.get("shots")),
        win_rate=compute_win_rate(wins, losses, matches_played),
        goal_shot_ratio=to_number(overview.get("goalShotRatio")),
        avatar_url=clean_string(payload.get("avatarURL")) or clean_string(payload.get("avatarUrl")),
    )

    ranked = stats.get("ranked")
    if isinstance(ranked, dict):
        for playlist in _ordered_ranked_playlists(ranked):
            if not isinstance(playlist, dict):
                continue
            rank = _as_dict(playlist.get("rank"))
            tier = _as_dict(rank.get("tier"))
            division = _as_dict(rank.get("division"))

            if metrics.rating is None:
                metrics.rating = to_number(playlist.get("mmr"))
            tier_name = clean_string(tier.get("name"))
            if metrics.rank is None and tier_name:
                division_name = clean_string(division.get("name"))
                metrics.rank = f"{tier_name} {division_name}" if division_name else tier_name
            if metrics.rank_icon_url is None:
                metrics.rank_icon_url = clean_string(tier.get("iconUrl"))
            if metrics.rank_tier_index is None and isinstance(tier.get("index"), (int, float)):
                metrics.rank_tier_index = float(tier["index"])
            if metrics.rank_division_index is None and isinstance(division.get("index"), (int, float)):
                metrics.rank_division_index = float(division["index"])
            if metrics.rank_points is None:
                metrics.rank_points = rank_points(metrics.rank_tier_index, metrics.rank_division_index)
            if metrics.rating is not None or metrics.rank or metrics.rank_points is not None:
                break

    return metrics


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

PayloadParser = Callable[[Any, Optional[str]], Optional[DerivedMetrics]]

PAYLOAD_PARSERS: tuple[PayloadParser, ...] = (
    parse_segmented_payload,
    parse_legacy_payload,
)


def suppress_unranked_fields(metrics: DerivedMetrics, mode: Optional[str]) -> DerivedMetrics:
    """Null out ladder fields for modes the provider does not rank."""
    mode_config = get_mode_config(mode)
    if mode_config is None or mode_config.ranked:
        return metrics
    return metrics.model_copy(update={field: None for field in LADDER_FIELDS})


def extract_metrics(
    payload: Any,
    mode: Optional[str | GameMode] = None,
    parsers: Iterable[PayloadParser] = PAYLOAD_PARSERS,
) -> DerivedMetrics:
    """
    Map a raw provider profile payload to DerivedMetrics.

    Pure: never raises for malformed input and never mutates the payload.

    Args:
        payload: Raw JSON payload from the stats provider
        mode: Game mode hint (selects the playlist segment and ranked rules)
        parsers: Shape-specific parsers, tried in order
    """
    mode_id = mode.value if isinstance(mode, GameMode) else mode
    for parser in parsers:
        metrics = parser(payload, mode_id)
        if metrics is not None:
            return suppress_unranked_fields(metrics, mode_id)
    return DerivedMetrics.empty()
