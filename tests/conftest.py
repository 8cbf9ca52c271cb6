"""
Pytest configuration for session-tracker tests.

Providers are in-process fakes, time is injected, and stores are in-memory
unless a test asks for SQLite explicitly.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from session_tracker.core.config import Settings
from session_tracker.polling.cooldown import CooldownTracker
from session_tracker.polling.logs import PollingLog
from session_tracker.polling.poller import SessionPoller
from session_tracker.providers.base import StatsProviderProtocol
from session_tracker.store.memory import InMemorySnapshotStore

START = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock usable as both an epoch-seconds and datetime source."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> float:
        return self.current.timestamp()

    def datetime(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeProvider(StatsProviderProtocol):
    """
    Scripted stats provider.

    ``profiles`` and ``histories`` map handle -> payload. A value that is an
    exception instance is raised instead of returned.
    """

    provider_name = "fake"

    def __init__(self):
        self.profiles: dict[str, Any] = {}
        self.histories: dict[str, Any] = {}
        self.calls: list[tuple[str, str]] = []

    @staticmethod
    def _respond(table: dict[str, Any], handle: str) -> Any:
        value = table.get(handle)
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_profile(self, platform: str, handle: str) -> Any:
        self.calls.append(("profile", handle))
        return self._respond(self.profiles, handle)

    async def fetch_match_history(self, platform: str, handle: str) -> Any:
        self.calls.append(("history", handle))
        return self._respond(self.histories, handle)

    def calls_for(self, kind: str) -> list[str]:
        return [handle for call_kind, handle in self.calls if call_kind == kind]


class ManualTicker:
    """
    Session timer sleep advanced by hand.

    Each call records its interval and parks until ``release``. ``tick``
    lets one wait finish and returns once the timer is parked again, which
    is after the poll cycle it triggered has completed.
    """

    def __init__(self, timeout: float = 1.0):
        self.timeout = timeout
        self.intervals: list[float] = []
        self.sleeping = asyncio.Event()
        self._release = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.intervals.append(seconds)
        release = asyncio.Event()
        self._release = release
        self.sleeping.set()
        await release.wait()

    async def wait_sleeping(self) -> None:
        await asyncio.wait_for(self.sleeping.wait(), self.timeout)

    def release(self) -> None:
        self.sleeping.clear()
        self._release.set()

    async def tick(self) -> None:
        await self.wait_sleeping()
        self.release()
        await self.wait_sleeping()


def profile_payload(wins: float, losses: float | None = None, **overview: Any) -> dict:
    """Legacy-shaped profile payload."""
    stats = {"wins": wins, **overview}
    if losses is not None:
        stats["losses"] = losses
    return {"stats": {"overview": stats}}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        stats_api_key="test-key",
        polling_interval_seconds=3600,
        poll_retries=0,
        manual_capture_retries=0,
    )


@pytest.fixture
def cooldown(clock: FakeClock) -> CooldownTracker:
    return CooldownTracker(clock=clock)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def ticker() -> ManualTicker:
    return ManualTicker()


@pytest.fixture
async def poller(provider, store, cooldown, settings, clock, ticker):
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    engine = SessionPoller(
        provider,
        store,
        cooldown=cooldown,
        polling_log=PollingLog(capacity=50),
        settings=settings,
        clock=clock.datetime,
        sleep=fake_sleep,
        timer_sleep=ticker,
    )
    engine.sleeps = sleeps
    yield engine
    await engine.shutdown()
