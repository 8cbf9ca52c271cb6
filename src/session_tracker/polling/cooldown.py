"""
Provider cooldown tracking.

One CooldownTracker is shared by every session in the process: it records
when the external stats provider last told us to back off, and the most
recent quota headers it reported. Pollers consult it before issuing any
call so a single rate-limit observation pauses all sessions at once.

Thread-safe for concurrent access; no method awaits or blocks.
"""

import math
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from threading import Lock
from typing import Callable, Optional

DEFAULT_FALLBACK_MS = 60_000
DEFAULT_MAX_MS = 10 * 60 * 1000


@dataclass(frozen=True)
class RateLimitInfo:
    """Last quota snapshot reported by the provider."""

    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at_ms": self.reset_at_ms,
        }


class CooldownTracker:
    """
    Single source of truth for "is the provider rate-limited, and for how long".

    Args:
        clock: Returns the current time in seconds since the epoch
        fallback_ms: Cooldown applied when a signal carries no hint
        max_ms: Cap applied to any hint
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        fallback_ms: int = DEFAULT_FALLBACK_MS,
        max_ms: int = DEFAULT_MAX_MS,
    ):
        self._clock = clock
        self.fallback_ms = fallback_ms
        self.max_ms = max_ms
        self._cooldown_until_ms = 0
        self._info = RateLimitInfo()
        self._lock = Lock()

    def now(self) -> float:
        """Current time in epoch seconds, per the tracker's clock."""
        return self._clock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def cooldown_until_ms(self) -> int:
        with self._lock:
            return self._cooldown_until_ms

    def remaining_cooldown_ms(self) -> int:
        """
        Milliseconds until the provider may be called again (0 when clear).

        Takes the larger of the explicit cooldown window and the window implied
        by the last quota headers (remaining == 0 until reset).
        """
        now = self._now_ms()
        with self._lock:
            explicit = self._cooldown_until_ms - now
            derived = 0
            if self._info.remaining == 0 and self._info.reset_at_ms:
                derived = self._info.reset_at_ms - now
        return max(0, explicit, derived)

    def is_cooling_down(self) -> bool:
        return self.remaining_cooldown_ms() > 0

    def record_rate_limit_signal(self, retry_after_ms: Optional[int] = None) -> int:
        """
        Extend the cooldown window after a rate-limit response.

        The window only ever grows: a shorter hint never cuts an existing
        cooldown short.

        Returns:
            The remaining cooldown in milliseconds after the update
        """
        hint = self.fallback_ms if retry_after_ms is None else max(0, int(retry_after_ms))
        until = self._now_ms() + min(hint, self.max_ms)
        with self._lock:
            self._cooldown_until_ms = max(self._cooldown_until_ms, until)
        return self.remaining_cooldown_ms()

    def record_headers(
        self,
        limit: Optional[int],
        remaining: Optional[int],
        reset_at_ms: Optional[int],
    ) -> None:
        """Replace the cached quota snapshot with values from a response."""
        with self._lock:
            self._info = RateLimitInfo(limit=limit, remaining=remaining, reset_at_ms=reset_at_ms)

    def info(self) -> RateLimitInfo:
        with self._lock:
            return self._info

    def reset(self) -> None:
        """Clear all state."""
        with self._lock:
            self._cooldown_until_ms = 0
            self._info = RateLimitInfo()


# ---------------------------------------------------------------------------
# Header parsing
# ---------------------------------------------------------------------------


def parse_retry_after_ms(
    value: Optional[str],
    *,
    now: Optional[float] = None,
    max_ms: int = DEFAULT_MAX_MS,
) -> Optional[int]:
    """
    Parse a Retry-After header (delta-seconds or HTTP date) into milliseconds.

    Returns None when the header is absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        if not math.isfinite(seconds):
            return None
        return min(max_ms, max(0, int(seconds * 1000)))

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    now = time.time() if now is None else now
    delta_ms = int((when.timestamp() - now) * 1000)
    return min(max_ms, max(0, delta_ms))


def parse_reset_at_ms(value: Optional[str], *, now: Optional[float] = None) -> Optional[int]:
    """
    Parse an X-RateLimit-Reset header into an absolute epoch-milliseconds value.

    Providers disagree on the unit: large values are epoch milliseconds,
    mid-sized values epoch seconds, anything smaller is seconds from now.
    """
    if not value:
        return None
    try:
        num = float(value)
    except ValueError:
        return None
    if not math.isfinite(num):
        return None
    if num > 1e12:
        return int(num)
    if num > 1e9:
        return int(num * 1000)
    now = time.time() if now is None else now
    return int((now + num) * 1000)


def parse_int_header(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return None
