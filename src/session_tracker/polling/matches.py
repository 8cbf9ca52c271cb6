"""
Match history normalisation and new-match inference.

Provider match-history payloads are opaque apart from what the poller needs:
an identity, an optional timestamp and, for ranked modes, a playlist signal.
Everything here is pure and works on plain dicts.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

from ..core.types import GameMode, get_mode_config
from ..store.base import MatchCursor

# Checked in order; first non-empty value wins.
MATCH_ID_PATHS = (
    ("id",),
    ("matchId",),
    ("metadata", "id"),
    ("attributes", "id"),
)

MATCH_TIME_PATHS = (
    ("date",),
    ("createdAt",),
    ("endDate",),
    ("timestamp",),
    ("metadata", "date"),
    ("metadata", "timestamp"),
    ("attributes", "date"),
)

PLAYLIST_ID_PATHS = (
    ("metadata", "playlistId"),
    ("metadata", "playlist", "id"),
    ("playlistId",),
    ("playlist", "id"),
    ("attributes", "playlistId"),
    ("attributes", "playlist"),
    ("attributes", "playlist", "id"),
)

PLAYLIST_NAME_PATHS = (
    ("metadata", "playlistName"),
    ("metadata", "playlist", "name"),
    ("playlist", "name"),
    ("attributes", "playlistName"),
    ("attributes", "playlist", "name"),
)


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _first(data: Any, paths: tuple[tuple[str, ...], ...]) -> Any:
    for path in paths:
        value = _dig(data, path)
        if value is not None and value != "":
            return value
    return None


# ---------------------------------------------------------------------------
# Flattening
# ---------------------------------------------------------------------------


def _session_groups(payload: Any) -> list:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    for items in (data.get("items"), data.get("matches"), payload.get("matches")):
        if items is not None:
            return items if isinstance(items, list) else []
    return []


def flatten_matches(payload: Any) -> list[dict]:
    """
    Normalise a match-history payload into a flat list of match records.

    Accepts a bare list, ``data.items``, ``data.matches`` or ``matches``.
    Groups carrying their own ``matches`` list (provider "sessions") are
    expanded in place; loose entries are kept only if they carry an id.
    """
    matches: list[dict] = []
    for group in _session_groups(payload):
        if isinstance(group, dict) and isinstance(group.get("matches"), list):
            matches.extend(m for m in group["matches"] if isinstance(m, dict))
        elif isinstance(group, list):
            matches.extend(m for m in group if isinstance(m, dict))
        elif isinstance(group, dict) and (
            group.get("id") or group.get("matchId") or _dig(group, ("metadata", "id"))
        ):
            matches.append(group)
    return matches


# ---------------------------------------------------------------------------
# Field access
# ---------------------------------------------------------------------------


def match_id(match: Any) -> Optional[str]:
    raw = _first(match, MATCH_ID_PATHS)
    return str(raw) if raw else None


def _epoch_to_datetime(value: float) -> Optional[datetime]:
    if not math.isfinite(value):
        return None
    # Large values are epoch milliseconds, mid-sized values epoch seconds.
    ms = value if value > 1e12 else value * 1000 if value > 1e9 else value
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def match_time(match: Any) -> Optional[datetime]:
    """When the match was played, as an aware UTC datetime, or None."""
    raw = _first(match, MATCH_TIME_PATHS)
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return _epoch_to_datetime(float(raw))
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def match_playlist_id(match: Any) -> Optional[int]:
    for path in PLAYLIST_ID_PATHS:
        value = _dig(match, path)
        if value is None or isinstance(value, (bool, dict, list)):
            continue
        try:
            num = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(num):
            return int(num)
    return None


def match_playlist_name(match: Any) -> Optional[str]:
    raw = _first(match, PLAYLIST_NAME_PATHS)
    return raw if isinstance(raw, str) and raw.strip() else None


def filter_matches_for_mode(matches: list[dict], mode: Optional[str | GameMode]) -> list[dict]:
    """
    Keep only matches played in the mode's focus playlist.

    Unranked modes (no focus playlist) keep everything, and so do histories
    in which no match carries any playlist signal at all.
    """
    mode_config = get_mode_config(mode)
    if mode_config is None or (mode_config.playlist_id is None and not mode_config.playlist_name):
        return list(matches)

    with_signal = [
        m for m in matches
        if match_playlist_id(m) is not None or match_playlist_name(m) is not None
    ]
    if not with_signal:
        return list(matches)
    return [
        m for m in with_signal
        if (mode_config.playlist_id is not None and match_playlist_id(m) == mode_config.playlist_id)
        or (mode_config.playlist_name is not None and match_playlist_name(m) == mode_config.playlist_name)
    ]


# ---------------------------------------------------------------------------
# Ordering and inference
# ---------------------------------------------------------------------------


def sort_matches_by_time(matches: list[dict]) -> list[dict]:
    """Newest first; matches without a timestamp sink to the end. Stable."""
    times = [match_time(m) for m in matches]
    if all(t is None for t in times):
        return list(matches)
    ordered = sorted(
        zip(matches, times),
        key=lambda pair: pair[1].timestamp() if pair[1] is not None else float("-inf"),
        reverse=True,
    )
    return [m for m, _ in ordered]


def latest_match(matches: list[dict]) -> Optional[dict]:
    if not matches:
        return None
    return sort_matches_by_time(matches)[0]


def observe(matches: list[dict]) -> MatchCursor:
    """Cursor describing the most recent match in a freshly fetched history."""
    latest = latest_match(matches)
    return MatchCursor(
        last_match_id=match_id(latest) if latest else None,
        last_match_at=match_time(latest) if latest else None,
        last_match_count=len(matches),
    )


def count_new_matches(matches: list[dict], cursor: MatchCursor) -> int:
    """
    How many matches were played since ``cursor`` was recorded.

    Signals are tried in order:

    1. Position of the previous match id in the time-sorted history.
    2. Matches strictly newer than the previous timestamp.
    3. Growth in the history length.
    4. The latest id differs from the previous one: assume exactly one.

    Step 4 undercounts when several matches land between polls and the
    provider caps history depth without timestamps.
    """
    if not matches:
        return 0
    ordered = sort_matches_by_time(matches)

    if cursor.last_match_id:
        for index, match in enumerate(ordered):
            if match_id(match) == cursor.last_match_id:
                return index

    has_time = any(match_time(m) is not None for m in ordered)
    timestamps_usable = cursor.last_match_at is not None and has_time
    if timestamps_usable:
        times = [match_time(m) for m in ordered]
        newer = sum(1 for t in times if t is not None and t > cursor.last_match_at)
        if newer > 0:
            return newer

    count = len(matches)
    if cursor.last_match_count is not None and count > cursor.last_match_count:
        return count - cursor.last_match_count

    if not timestamps_usable:
        latest_id = match_id(ordered[0])
        if latest_id and cursor.last_match_id and latest_id != cursor.last_match_id:
            return 1

    return 0
