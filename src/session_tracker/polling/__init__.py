"""
Polling building blocks.

- cooldown: process-wide provider cooldown tracking
- retry: bounded exponential-backoff retry
- matches: match-history normalisation and new-match inference
- queue: per-session serial task queue
- logs: polling log ring buffer

The SessionPoller itself lives in polling.poller:

    from session_tracker.polling.poller import SessionPoller
"""

from .cooldown import CooldownTracker, RateLimitInfo
from .logs import PollingLog, PollingLogEntry
from .matches import count_new_matches, flatten_matches, observe
from .queue import SessionEndedError, SessionTaskQueue
from .retry import RetryPolicy, run_with_retry

__all__ = [
    "CooldownTracker",
    "RateLimitInfo",
    "PollingLog",
    "PollingLogEntry",
    "count_new_matches",
    "flatten_matches",
    "observe",
    "SessionEndedError",
    "SessionTaskQueue",
    "RetryPolicy",
    "run_with_retry",
]
