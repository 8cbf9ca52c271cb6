"""
In-memory polling log.

One entry is appended per player per poll cycle so an external log viewer
can see what the poller observed. Bounded: the oldest entries are dropped
once the capacity is reached.
"""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional

DEFAULT_CAPACITY = 500


@dataclass(frozen=True)
class PollingLogEntry:
    """What one poll cycle saw for one player."""

    id: int
    session_id: int
    player_id: Optional[int]
    handle: Optional[str]
    last_match_id: Optional[str]
    last_match_at: Optional[datetime]
    latest_match_id: Optional[str]
    latest_match_at: Optional[datetime]
    new_matches: int
    total_matches: int
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("last_match_at", "latest_match_at", "created_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data


class PollingLog:
    """Bounded ring buffer of PollingLogEntry records."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: deque[PollingLogEntry] = deque(maxlen=capacity)
        self._next_id = 1
        self._lock = Lock()

    def append(self, **fields: Any) -> PollingLogEntry:
        with self._lock:
            entry = PollingLogEntry(id=self._next_id, **fields)
            self._next_id += 1
            self._entries.append(entry)
        return entry

    def list(self, limit: int = 200) -> list[PollingLogEntry]:
        """Most recent entries first."""
        if limit <= 0:
            return []
        with self._lock:
            entries = list(self._entries)
        return list(reversed(entries[-limit:]))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
