"""
Session Poller

Drives each tracked session through Idle -> Initializing -> (Polling <-> Idle)
-> Ended. One timer task per active session triggers poll cycles; every
operation for a session runs through that session's SessionTaskQueue, so
initialisation, poll ticks, manual captures and ending never overlap.

Per poll cycle, for each player:
1. Fetch match history (bounded retries, rate limits never retried)
2. Infer how many matches were played since the player's cursor
3. Advance the cursor to what was just observed
4. Append a polling log entry

The session's match index then advances by the largest per-player count,
and a fresh snapshot is captured for every player tagged with the new index.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..core.config import Settings, get_settings
from ..core.http import ConfigurationError, RateLimitError, is_retryable
from ..core.types import GameMode, parse_mode
from ..metrics.extractor import extract_metrics
from ..providers.base import StatsProviderProtocol
from ..services.session_stats import SessionStatsService
from ..store.base import (
    MatchCursor,
    Player,
    Session,
    SessionState,
    Snapshot,
    SnapshotStore,
    Team,
)
from .cooldown import CooldownTracker
from .logs import PollingLog
from .matches import (
    count_new_matches,
    filter_matches_for_mode,
    flatten_matches,
    observe,
)
from .queue import SessionEndedError, SessionTaskQueue
from .retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Raised for operations on a session id the poller does not know."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionPoller:
    """
    Polling engine for live tracking sessions.

    Args:
        provider: Stats provider used for profile and match-history fetches
        store: Snapshot store sessions and snapshots are written through
        cooldown: Shared cooldown tracker (defaults to the provider's own)
        polling_log: Observability ring buffer
        settings: Retry bounds, default interval and cooldown limits
        clock: Returns the current aware datetime (snapshot and log times)
        sleep: Awaitable sleep used between retries
        timer_sleep: Awaitable sleep the session timer waits on between ticks
    """

    def __init__(
        self,
        provider: StatsProviderProtocol,
        store: SnapshotStore,
        *,
        cooldown: CooldownTracker | None = None,
        polling_log: PollingLog | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        timer_sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.provider = provider
        self.store = store
        self.stats = SessionStatsService(store)
        if cooldown is None:
            cooldown = getattr(provider, "cooldown", None)
        if cooldown is None:
            cooldown = CooldownTracker(
                fallback_ms=self.settings.rate_limit_fallback_ms,
                max_ms=self.settings.rate_limit_max_ms,
            )
        self.cooldown = cooldown
        if polling_log is None:
            polling_log = PollingLog(self.settings.polling_log_capacity)
        self.polling_log = polling_log
        self._clock = clock or _utcnow
        self._sleep = sleep
        self._timer_sleep = timer_sleep

        self.poll_policy = RetryPolicy(
            retries=self.settings.poll_retries,
            base_delay_ms=self.settings.poll_base_delay_ms,
        )
        self.manual_policy = RetryPolicy(
            retries=self.settings.manual_capture_retries,
            base_delay_ms=self.settings.poll_base_delay_ms,
        )

        self._sessions: dict[int, Session] = {}
        self._queues: dict[int, SessionTaskQueue] = {}
        self._timers: dict[int, asyncio.Task] = {}

    # =========================================================================
    # Session registry
    # =========================================================================

    def create_session(
        self,
        mode: str | GameMode,
        players: Iterable[tuple[str, str]],
        polling_interval_seconds: int | None = None,
        team_id: int | None = None,
        team_name: str | None = None,
    ) -> Session:
        """
        Register a new session for (platform, handle) players.

        The session joins ``team_id`` when given. Otherwise it joins the team
        already saved for the same roster and mode, or a new team is created
        when ``team_name`` is given.

        Raises:
            ValueError: If the mode is unknown, the interval is not positive,
                or ``team_id`` names a missing team or one of another mode
        """
        game_mode = parse_mode(mode)
        interval = (
            polling_interval_seconds
            if polling_interval_seconds is not None
            else self.settings.polling_interval_seconds
        )
        if interval <= 0:
            raise ValueError("polling_interval_seconds must be positive")

        players = list(players)
        team = self._resolve_team(game_mode, players, team_id, team_name)
        session = self.store.create_session(
            game_mode, interval, players, team_id=team.id if team else None
        )
        self._sessions[session.id] = session
        logger.info(
            f"Created session {session.id} ({game_mode.value}, "
            f"{len(session.players)} players, every {interval}s)"
            + (f" for team {team.id} ({team.name})" if team else "")
        )
        return session

    def _resolve_team(
        self,
        mode: GameMode,
        players: list[tuple[str, str]],
        team_id: int | None,
        team_name: str | None,
    ) -> Team | None:
        if team_id is not None:
            team = self.store.get_team(team_id)
            if team is None:
                raise ValueError(f"Unknown team: {team_id}")
            if team.mode != mode:
                raise ValueError(f"Team {team_id} plays {team.mode.value}, not {mode.value}")
            return team

        team = self.store.find_team_by_roster(mode, players)
        if team is None and team_name and team_name.strip():
            team = self.store.create_team(team_name.strip(), mode, players)
            logger.info(f"Created team {team.id} ({team.name})")
        return team

    def get_session(self, session_id: int) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = self.store.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(f"Unknown session: {session_id}")
            self._sessions[session_id] = session
        return session

    def is_polling(self, session_id: int) -> bool:
        task = self._timers.get(session_id)
        return task is not None and not task.done()

    def _queue_for(self, session_id: int) -> SessionTaskQueue:
        queue = self._queues.get(session_id)
        if queue is None:
            queue = SessionTaskQueue(session_id)
            self._queues[session_id] = queue
        return queue

    async def _submit(
        self,
        session_id: int,
        operation: Callable[[Session], Awaitable[Any]],
        *,
        last: bool = False,
    ) -> Any:
        session = self.get_session(session_id)
        if session.is_ended:
            raise SessionEndedError(f"Session {session_id} has ended")
        return await self._queue_for(session_id).submit(lambda: operation(session), last=last)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start_session(
        self,
        mode: str | GameMode,
        players: Iterable[tuple[str, str]],
        polling_interval_seconds: int | None = None,
        team_id: int | None = None,
        team_name: str | None = None,
    ) -> Session:
        """Create, initialise and start polling a session."""
        session = self.create_session(
            mode, players, polling_interval_seconds, team_id=team_id, team_name=team_name
        )
        await self.initialize_session(session.id)
        self.start_polling(session.id)
        return session

    async def initialize_session(self, session_id: int) -> list[Snapshot]:
        """Capture baselines and seed match cursors. Returns the baseline snapshots."""
        return await self._submit(session_id, self._initialize)

    async def poll_session(self, session_id: int) -> int:
        """Run one poll cycle now. Returns how far the match index advanced."""
        return await self._submit(session_id, self._poll)

    async def capture_manual_snapshot(self, session_id: int) -> list[Snapshot]:
        """
        Capture a snapshot for every player at the current match index.

        Raises:
            RateLimitError: If the provider is cooling down (carries the remaining wait)
        """
        return await self._submit(session_id, self._capture_manual)

    def start_polling(self, session_id: int) -> None:
        """Start the session's timer. Idempotent."""
        session = self.get_session(session_id)
        if session.is_ended:
            raise SessionEndedError(f"Session {session_id} has ended")
        if self.is_polling(session_id):
            return

        self._timers[session_id] = asyncio.create_task(
            self._timer_loop(session_id, session.polling_interval_seconds),
            name=f"session-{session_id}-timer",
        )
        session.is_active = True
        self.store.save_session(session)
        logger.info(f"Polling session {session_id} every {session.polling_interval_seconds}s")

    def stop_polling(self, session_id: int) -> None:
        """Cancel the session's timer; an in-flight task still completes."""
        session = self.get_session(session_id)
        task = self._timers.pop(session_id, None)
        if task is not None:
            task.cancel()
        if session.is_active:
            session.is_active = False
            self.store.save_session(session)
            logger.info(f"Stopped polling session {session_id}")

    async def end_session(self, session_id: int) -> Session:
        """
        Stop polling and mark the session ended. Later submissions are rejected.

        The session's team result is stored before it leaves the registry.
        """
        session = self.get_session(session_id)
        if session.is_ended:
            return session
        self.stop_polling(session_id)
        queue = self._queue_for(session_id)
        try:
            await self._submit(session_id, self._end, last=True)
        finally:
            await queue.aclose()
            self._queues.pop(session_id, None)
            self._sessions.pop(session_id, None)
        return session

    async def shutdown(self) -> None:
        """Stop every timer and drain every session queue."""
        timers = list(self._timers.values())
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()

        for session in self._sessions.values():
            if session.is_active and not session.is_ended:
                session.is_active = False
                self.store.save_session(session)

        await asyncio.gather(*(queue.aclose() for queue in self._queues.values()))
        self._queues.clear()
        logger.info("Session poller stopped")

    async def _timer_loop(self, session_id: int, interval_seconds: int) -> None:
        """Run a poll cycle every interval until cancelled or the session ends."""
        while True:
            try:
                await self._timer_sleep(interval_seconds)
                await self.poll_session(session_id)
            except asyncio.CancelledError:
                break
            except SessionEndedError:
                break
            except Exception as e:
                logger.error(f"Poll tick failed for session {session_id}: {e}")

    # =========================================================================
    # Queued operations
    # =========================================================================

    async def _initialize(self, session: Session) -> list[Snapshot]:
        session.state = SessionState.INITIALIZING
        session.match_index = 0
        self.store.save_session(session)
        try:
            snapshots = await self._capture_snapshots(session, 0, self.poll_policy)

            for player in session.players:
                if self.cooldown.is_cooling_down():
                    logger.warning(
                        f"Session {session.id}: cooling down, skipping remaining cursor seeds"
                    )
                    break
                try:
                    matches = await self._fetch_matches(session, player, self.poll_policy)
                except ConfigurationError:
                    raise
                except RateLimitError as e:
                    self._record_rate_limit(e, player)
                    break
                except Exception as e:
                    logger.warning(f"Failed to fetch match history for {player.handle}: {e}")
                    continue

                if matches:
                    self._set_cursor(player, observe(matches))
        finally:
            session.state = SessionState.IDLE
            self.store.save_session(session)

        logger.info(
            f"Initialized session {session.id}: "
            f"{len(snapshots)}/{len(session.players)} baselines captured"
        )
        return snapshots

    async def _poll(self, session: Session) -> int:
        if session.is_ended or not session.is_active:
            return 0
        remaining = self.cooldown.remaining_cooldown_ms()
        if remaining > 0:
            logger.info(f"Session {session.id}: provider cooling down ({remaining}ms), skipping tick")
            return 0

        session.state = SessionState.POLLING
        self.store.save_session(session)
        try:
            max_new_matches = 0
            for player in session.players:
                if self.cooldown.is_cooling_down():
                    logger.warning(f"Session {session.id}: rate limited, skipping remaining players")
                    break
                try:
                    new_matches = await self._poll_player(session, player)
                except RateLimitError:
                    break
                max_new_matches = max(max_new_matches, new_matches)

            if max_new_matches > 0:
                session.match_index += max_new_matches
                self.store.save_session(session)
                logger.info(
                    f"Session {session.id}: {max_new_matches} new match(es), "
                    f"match index now {session.match_index}"
                )
                await self._capture_snapshots(session, session.match_index, self.poll_policy)
            return max_new_matches
        finally:
            if not session.is_ended:
                session.state = SessionState.IDLE
                self.store.save_session(session)

    async def _poll_player(self, session: Session, player: Player) -> int:
        """
        Poll one player and advance their cursor.

        Raises:
            RateLimitError: After recording it, so the caller can skip the rest of the cycle
            ConfigurationError: Propagated untouched
        """
        previous = player.cursor
        try:
            matches = await self._fetch_matches(session, player, self.poll_policy)
        except ConfigurationError:
            raise
        except Exception as e:
            self._log_poll(session, player, previous, None, 0, error=str(e) or type(e).__name__)
            if isinstance(e, RateLimitError):
                self._record_rate_limit(e, player)
                raise
            logger.warning(f"Failed to poll match history for {player.handle}: {e}")
            return 0

        observed = observe(matches)
        if not matches:
            self._set_cursor(player, MatchCursor(last_match_count=0))
            self._log_poll(session, player, previous, observed, 0)
            return 0

        if previous.is_empty:
            # First observation establishes the cursor; it is not activity.
            new_matches = 0
        else:
            new_matches = count_new_matches(matches, previous)

        self._set_cursor(
            player,
            MatchCursor(
                last_match_id=observed.last_match_id or previous.last_match_id,
                last_match_at=observed.last_match_at or previous.last_match_at,
                last_match_count=observed.last_match_count,
            ),
        )
        self._log_poll(session, player, previous, observed, new_matches)
        return new_matches

    async def _capture_manual(self, session: Session) -> list[Snapshot]:
        remaining = self.cooldown.remaining_cooldown_ms()
        if remaining > 0:
            raise RateLimitError("Stats API rate limit cooldown.", retry_after_ms=remaining)
        return await self._capture_snapshots(session, session.match_index, self.manual_policy)

    async def _end(self, session: Session) -> Session:
        session.is_active = False
        session.is_ended = True
        session.state = SessionState.ENDED
        session.ended_at = self._clock()
        self.store.save_session(session)
        logger.info(f"Ended session {session.id} at match index {session.match_index}")
        if session.team_id is not None:
            try:
                self.stats.record_session_stats(session, session.ended_at)
            except Exception as e:
                logger.error(f"Failed to store team stats for session {session.id}: {e}")
        return session

    # =========================================================================
    # Provider access
    # =========================================================================

    async def _fetch_matches(
        self,
        session: Session,
        player: Player,
        policy: RetryPolicy,
    ) -> list[dict]:
        raw = await run_with_retry(
            lambda: self.provider.fetch_match_history(player.platform, player.handle),
            policy,
            should_retry=is_retryable,
            sleep=self._sleep,
        )
        return filter_matches_for_mode(flatten_matches(raw), session.mode)

    async def _capture_snapshots(
        self,
        session: Session,
        match_index: int,
        policy: RetryPolicy,
    ) -> list[Snapshot]:
        """Best-effort profile capture for every player, tagged with ``match_index``."""
        captured_at = self._clock()
        snapshots: list[Snapshot] = []

        for player in session.players:
            if self.cooldown.is_cooling_down():
                logger.warning(f"Session {session.id}: rate limited, skipping remaining snapshots")
                break
            try:
                raw = await run_with_retry(
                    lambda: self.provider.fetch_profile(player.platform, player.handle),
                    policy,
                    should_retry=is_retryable,
                    sleep=self._sleep,
                )
            except ConfigurationError:
                raise
            except RateLimitError as e:
                self._record_rate_limit(e, player)
                break
            except Exception as e:
                logger.warning(
                    f"Failed to fetch stats for {player.handle} in session {session.id}: {e}"
                )
                continue

            derived = extract_metrics(raw, session.mode)
            snapshots.append(
                self.store.insert_snapshot(
                    session.id, player.id, captured_at, match_index, raw, derived
                )
            )

        return snapshots

    # =========================================================================
    # Helpers
    # =========================================================================

    def _set_cursor(self, player: Player, cursor: MatchCursor) -> None:
        self.store.update_player_match_state(
            player.id, cursor.last_match_id, cursor.last_match_at, cursor.last_match_count
        )
        player.cursor = cursor

    def _record_rate_limit(self, error: RateLimitError, player: Player) -> None:
        remaining = self.cooldown.record_rate_limit_signal(error.retry_after_ms)
        logger.warning(f"Rate limited for {player.handle}. Cooldown {math.ceil(remaining / 1000)}s.")

    def _log_poll(
        self,
        session: Session,
        player: Player,
        previous: MatchCursor,
        observed: Optional[MatchCursor],
        new_matches: int,
        error: Optional[str] = None,
    ) -> None:
        self.polling_log.append(
            session_id=session.id,
            player_id=player.id,
            handle=player.handle,
            last_match_id=previous.last_match_id,
            last_match_at=previous.last_match_at,
            latest_match_id=observed.last_match_id if observed else None,
            latest_match_at=observed.last_match_at if observed else None,
            new_matches=new_matches,
            total_matches=observed.last_match_count if observed else 0,
            error=error,
            created_at=self._clock(),
        )
