"""
Session poller tests.

Drives the engine through initialisation and poll cycles against a scripted
provider and the in-memory store.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import profile_payload
from session_tracker.core.http import ConfigurationError, ExternalAPIError, RateLimitError
from session_tracker.polling.poller import SessionNotFoundError
from session_tracker.polling.queue import SessionEndedError
from session_tracker.polling.retry import RetryPolicy
from session_tracker.store.base import MatchCursor, SessionState

PLAYERS = [("xbl", "Alpha"), ("steam", "Bravo")]


async def started_session(poller, provider, histories=None, wins=10, **team):
    """Create, initialise and start polling a 2v2 session with baselines of ``wins``-5."""
    for _, handle in PLAYERS:
        provider.profiles[handle] = profile_payload(wins, 5)
    provider.histories.update(histories or {"Alpha": [{"id": "a1"}], "Bravo": [{"id": "b1"}]})
    session = await poller.start_session("2v2", PLAYERS, **team)
    provider.calls.clear()
    return session


class TestSessionCreation:
    async def test_rejects_unknown_mode(self, poller):
        with pytest.raises(ValueError):
            poller.create_session("5v5", PLAYERS)

    async def test_rejects_non_positive_interval(self, poller):
        with pytest.raises(ValueError):
            poller.create_session("2v2", PLAYERS, polling_interval_seconds=0)

    async def test_uses_default_interval(self, poller, settings):
        session = poller.create_session("3v3", PLAYERS)
        assert session.polling_interval_seconds == settings.polling_interval_seconds
        assert session.state == SessionState.IDLE
        assert [p.handle for p in session.players] == ["Alpha", "Bravo"]

    async def test_unknown_session(self, poller):
        with pytest.raises(SessionNotFoundError):
            await poller.poll_session(999)


class TestTeams:
    async def test_no_team_without_match_or_name(self, poller, store):
        session = poller.create_session("2v2", PLAYERS)
        assert session.team_id is None
        assert store.list_teams() == []

    async def test_team_name_creates_team(self, poller, store):
        session = poller.create_session("2v2", PLAYERS, team_name="  Night Shift ")

        team = store.get_team(session.team_id)
        assert team.name == "Night Shift"
        assert team.roster_key == "steam:bravo|xbl:alpha"

    async def test_same_roster_reuses_team(self, poller, store):
        team = store.create_team("Duo", "2v2", [("STEAM", "bravo"), ("xbl", "ALPHA")])

        session = poller.create_session("2v2", PLAYERS, team_name="Other name")

        assert session.team_id == team.id
        assert len(store.list_teams()) == 1

    async def test_roster_match_is_per_mode(self, poller, store):
        store.create_team("Duo", "3v3", PLAYERS)
        session = poller.create_session("2v2", PLAYERS)
        assert session.team_id is None

    async def test_explicit_team(self, poller, store):
        team = store.create_team("Subs", "2v2", [("xbl", "Charlie")])
        session = poller.create_session("2v2", PLAYERS, team_id=team.id)
        assert session.team_id == team.id

    async def test_explicit_team_must_exist_and_match_mode(self, poller, store):
        team = store.create_team("Trio", "3v3", PLAYERS)
        with pytest.raises(ValueError):
            poller.create_session("2v2", PLAYERS, team_id=999)
        with pytest.raises(ValueError):
            poller.create_session("2v2", PLAYERS, team_id=team.id)

    async def test_end_stores_team_result_and_records(self, poller, provider, store, clock):
        first = await started_session(poller, provider, team_name="Duo")
        for _, handle in PLAYERS:
            provider.profiles[handle] = profile_payload(12, 5)
        provider.histories.update({"Alpha": [{"id": "a2"}], "Bravo": [{"id": "b2"}]})
        await poller.poll_session(first.id)
        await poller.end_session(first.id)

        stats = store.get_session_team_stats(first.id)
        assert stats.team_id == first.team_id
        assert stats.created_at == clock.datetime()
        assert stats.team["wins"] == 2
        assert stats.records == {}
        assert {pid for pid in stats.deltas} == {p.id for p in first.players}

        second = await started_session(poller, provider, wins=12)
        assert second.team_id == first.team_id
        await poller.end_session(second.id)

        assert store.get_session_team_stats(second.id).records["wins"] == "low"
        assert len(store.list_team_stats(first.team_id)) == 2

    async def test_end_without_team_stores_nothing(self, poller, provider, store):
        session = await started_session(poller, provider)
        await poller.end_session(session.id)
        assert store.get_session_team_stats(session.id) is None


class TestInitialization:
    async def test_captures_baselines_and_seeds_cursors(self, poller, provider, store):
        provider.profiles = {"Alpha": profile_payload(10, 5), "Bravo": profile_payload(3, 1)}
        provider.histories = {
            "Alpha": [{"id": "a1", "date": "2026-03-01T17:00:00Z"}, {"id": "a0", "date": "2026-03-01T16:00:00Z"}],
            "Bravo": [{"id": "b1"}],
        }
        session = poller.create_session("2v2", PLAYERS)

        baselines = await poller.initialize_session(session.id)

        assert len(baselines) == 2
        assert all(s.match_index == 0 for s in baselines)
        alpha, bravo = session.players
        assert store.get_baseline_snapshot(alpha.id).derived.wins == 10
        assert alpha.cursor.last_match_id == "a1"
        assert alpha.cursor.last_match_count == 2
        assert alpha.cursor.last_match_at is not None
        assert store.get_player_cursor(bravo.id) == MatchCursor("b1", None, 1)
        assert session.match_index == 0
        assert session.state == SessionState.IDLE

    async def test_one_failing_player_does_not_block_others(self, poller, provider, store):
        provider.profiles = {"Alpha": ExternalAPIError("boom"), "Bravo": profile_payload(3, 1)}
        provider.histories = {"Alpha": [{"id": "a1"}], "Bravo": [{"id": "b1"}]}
        session = poller.create_session("2v2", PLAYERS)

        baselines = await poller.initialize_session(session.id)

        alpha, bravo = session.players
        assert [s.player_id for s in baselines] == [bravo.id]
        assert store.get_baseline_snapshot(alpha.id) is None
        assert alpha.cursor.last_match_id == "a1"

    async def test_empty_history_leaves_cursor_empty(self, poller, provider):
        provider.profiles = {"Alpha": profile_payload(1), "Bravo": profile_payload(1)}
        provider.histories = {"Alpha": [], "Bravo": {"data": {"items": []}}}
        session = poller.create_session("2v2", PLAYERS)

        await poller.initialize_session(session.id)

        assert all(p.cursor.is_empty for p in session.players)

    async def test_configuration_error_aborts_operation(self, poller, provider):
        provider.profiles = {"Alpha": ConfigurationError("no key")}
        session = poller.create_session("2v2", PLAYERS)

        with pytest.raises(ConfigurationError):
            await poller.initialize_session(session.id)
        assert session.state == SessionState.IDLE


class TestPollCycle:
    async def test_latest_id_change_advances_match_index(self, poller, provider, store):
        session = await started_session(poller, provider)
        provider.profiles = {"Alpha": profile_payload(11, 5), "Bravo": profile_payload(11, 5)}
        provider.histories["Alpha"] = [{"id": "a2"}]

        advanced = await poller.poll_session(session.id)

        assert advanced == 1
        assert session.match_index == 1
        tagged = [s for s in store.list_recent_snapshots(session.id, 10) if s.match_index == 1]
        assert sorted(s.player_id for s in tagged) == sorted(p.id for p in session.players)
        assert all(s.derived.wins == 11 for s in tagged)

    async def test_no_new_matches_captures_nothing(self, poller, provider, store):
        session = await started_session(poller, provider)

        assert await poller.poll_session(session.id) == 0
        assert session.match_index == 0
        assert provider.calls_for("profile") == []
        assert len(store.list_recent_snapshots(session.id, 10)) == 2

    async def test_advances_by_max_not_sum(self, poller, provider):
        session = await started_session(
            poller,
            provider,
            {"Alpha": [{"id": "a1"}], "Bravo": [{"id": "b1"}]},
        )
        provider.histories = {
            "Alpha": [{"id": "a3"}, {"id": "a2"}, {"id": "a1"}],
            "Bravo": [{"id": "b2"}, {"id": "b1"}],
        }

        assert await poller.poll_session(session.id) == 2
        assert session.match_index == 2

    async def test_cursor_advances_to_what_was_seen(self, poller, provider):
        session = await started_session(poller, provider)
        provider.histories["Alpha"] = [{"id": "a2"}, {"id": "a1"}]

        await poller.poll_session(session.id)

        alpha = session.players[0]
        assert alpha.cursor.last_match_id == "a2"
        assert alpha.cursor.last_match_count == 2

    async def test_first_observation_seeds_without_activity(self, poller, provider):
        session = await started_session(poller, provider, {"Alpha": [], "Bravo": [{"id": "b1"}]})
        provider.histories["Alpha"] = [{"id": "a5"}, {"id": "a4"}]

        assert await poller.poll_session(session.id) == 0
        assert session.players[0].cursor.last_match_id == "a5"

    async def test_failed_fetch_keeps_cursor(self, poller, provider, store):
        session = await started_session(poller, provider)
        alpha = session.players[0]
        before = store.get_player_cursor(alpha.id)
        provider.histories["Alpha"] = ExternalAPIError("503 from provider", status_code=503)
        provider.histories["Bravo"] = [{"id": "b2"}]

        advanced = await poller.poll_session(session.id)

        assert advanced == 1
        assert store.get_player_cursor(alpha.id) == before
        assert alpha.cursor == before
        entry = next(e for e in poller.polling_log.list() if e.player_id == alpha.id)
        assert entry.error == "503 from provider"
        assert entry.new_matches == 0

    async def test_rate_limit_skips_remaining_players(self, poller, provider, cooldown):
        session = await started_session(poller, provider)
        provider.histories["Alpha"] = RateLimitError("slow down", retry_after_ms=30_000)

        assert await poller.poll_session(session.id) == 0

        assert provider.calls_for("history") == ["Alpha"]
        assert cooldown.remaining_cooldown_ms() == 30_000
        assert len(poller.polling_log) == 1

    async def test_cooldown_makes_tick_a_no_op(self, poller, provider, cooldown, clock):
        session = await started_session(poller, provider)
        cooldown.record_rate_limit_signal(10_000)

        assert await poller.poll_session(session.id) == 0
        assert provider.calls == []

        clock.advance(11)
        provider.histories["Alpha"] = [{"id": "a2"}]
        assert await poller.poll_session(session.id) == 1

    async def test_inactive_session_is_not_polled(self, poller, provider):
        session = await started_session(poller, provider)
        poller.stop_polling(session.id)

        assert await poller.poll_session(session.id) == 0
        assert provider.calls == []
        assert not session.is_active

    async def test_match_index_never_decreases(self, poller, provider):
        session = await started_session(poller, provider)
        histories = [
            [{"id": "a2"}],
            [{"id": "a2"}],
            [{"id": "a1"}],
            [],
            [{"id": "a3"}, {"id": "a2"}],
        ]
        seen = [session.match_index]
        for history in histories:
            provider.histories["Alpha"] = history
            await poller.poll_session(session.id)
            seen.append(session.match_index)

        assert seen == sorted(seen)

    async def test_polling_log_entry_per_player(self, poller, provider):
        session = await started_session(poller, provider)
        provider.histories["Alpha"] = [{"id": "a2"}]

        await poller.poll_session(session.id)

        entries = poller.polling_log.list()
        assert len(entries) == 2
        alpha_entry = next(e for e in entries if e.handle == "Alpha")
        assert alpha_entry.last_match_id == "a1"
        assert alpha_entry.latest_match_id == "a2"
        assert alpha_entry.new_matches == 1
        assert alpha_entry.total_matches == 1
        assert alpha_entry.error is None

    async def test_polling_log_uses_engine_clock(self, poller, provider, clock):
        session = await started_session(poller, provider)
        clock.advance(300)

        await poller.poll_session(session.id)

        assert [e.created_at for e in poller.polling_log.list()] == [clock.datetime()] * 2

    async def test_retries_transient_failures(self, poller, provider):
        session = await started_session(poller, provider)
        calls = {"n": 0}

        async def flaky(platform, handle):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ExternalAPIError("blip")
            return [{"id": "a2"}]

        poller.poll_policy = RetryPolicy(retries=2, base_delay_ms=500)
        provider.histories["Bravo"] = [{"id": "b1"}]
        fetch_history = provider.fetch_match_history

        async def routed(platform, handle):
            if handle == "Alpha":
                return await flaky(platform, handle)
            return await fetch_history(platform, handle)

        provider.fetch_match_history = routed

        assert await poller.poll_session(session.id) == 1
        assert poller.sleeps == [0.5]


class TestManualCapture:
    async def test_tags_current_match_index(self, poller, provider):
        session = await started_session(poller, provider)

        snapshots = await poller.capture_manual_snapshot(session.id)

        assert len(snapshots) == 2
        assert all(s.match_index == 0 for s in snapshots)

    async def test_rejected_during_cooldown(self, poller, provider, cooldown):
        session = await started_session(poller, provider)
        cooldown.record_rate_limit_signal(20_000)

        with pytest.raises(RateLimitError) as exc_info:
            await poller.capture_manual_snapshot(session.id)
        assert exc_info.value.retry_after_ms == 20_000
        assert provider.calls == []


class TestLifecycle:
    async def test_start_polling_is_idempotent(self, poller, provider):
        session = await started_session(poller, provider)
        task = poller._timers[session.id]

        poller.start_polling(session.id)

        assert poller._timers[session.id] is task
        assert poller.is_polling(session.id)
        assert session.is_active

    async def test_end_session(self, poller, provider, clock):
        session = await started_session(poller, provider)

        await poller.end_session(session.id)

        assert session.is_ended
        assert not session.is_active
        assert session.state == SessionState.ENDED
        assert session.ended_at == clock.datetime()
        assert not poller.is_polling(session.id)

    async def test_ended_session_rejects_work(self, poller, provider):
        session = await started_session(poller, provider)
        await poller.end_session(session.id)

        with pytest.raises(SessionEndedError):
            await poller.poll_session(session.id)
        with pytest.raises(SessionEndedError):
            await poller.capture_manual_snapshot(session.id)
        with pytest.raises(SessionEndedError):
            poller.start_polling(session.id)

    async def test_end_session_is_idempotent(self, poller, provider):
        session = await started_session(poller, provider)
        await poller.end_session(session.id)

        assert (await poller.end_session(session.id)) is session

    async def test_sessions_are_independent(self, poller, provider):
        first = await started_session(poller, provider)
        second = await started_session(poller, provider)
        await poller.end_session(first.id)

        provider.histories["Alpha"] = [{"id": "a2"}]
        assert await poller.poll_session(second.id) == 1

    async def test_end_session_releases_engine_state(self, poller, provider, store):
        session = await started_session(poller, provider)

        await poller.end_session(session.id)

        assert session.id not in poller._sessions
        assert session.id not in poller._queues
        assert poller.get_session(session.id) is store.get_session(session.id)
        assert poller.get_session(session.id).is_ended


class TestTimer:
    async def test_polls_on_the_interval(self, poller, provider, ticker, settings):
        session = await started_session(poller, provider)
        provider.histories["Alpha"] = [{"id": "a2"}]

        await ticker.tick()

        assert ticker.intervals == [settings.polling_interval_seconds] * 2
        assert provider.calls_for("history") == ["Alpha", "Bravo"]
        assert session.match_index == 1

    async def test_configuration_error_is_logged_and_timer_continues(
        self, poller, provider, ticker, caplog
    ):
        session = await started_session(poller, provider)
        provider.histories["Alpha"] = ConfigurationError("Player stats API key is not configured.")

        await ticker.tick()
        await ticker.tick()

        failures = [r for r in caplog.records if "Poll tick failed" in r.getMessage()]
        assert len(failures) == 2
        assert "not configured" in failures[0].getMessage()
        assert poller.is_polling(session.id)
        assert len(ticker.intervals) == 3

    async def test_unexpected_error_is_logged_and_timer_continues(
        self, poller, provider, ticker, caplog, monkeypatch
    ):
        session = await started_session(poller, provider)

        async def broken_poll(session):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(poller, "_poll", broken_poll)

        await ticker.tick()

        assert f"Poll tick failed for session {session.id}: store unavailable" in caplog.text
        assert poller.is_polling(session.id)

    async def test_stop_during_tick_lets_it_finish(self, poller, provider, ticker):
        session = await started_session(poller, provider)
        provider.histories["Alpha"] = [{"id": "a2"}]
        gate = asyncio.Event()
        entered = asyncio.Event()
        fetch_history = provider.fetch_match_history

        async def gated(platform, handle):
            entered.set()
            await gate.wait()
            return await fetch_history(platform, handle)

        provider.fetch_match_history = gated
        await ticker.wait_sleeping()
        timer = poller._timers[session.id]

        ticker.release()
        await asyncio.wait_for(entered.wait(), 1)
        poller.stop_polling(session.id)
        gate.set()
        await asyncio.gather(timer, return_exceptions=True)

        # Queued behind the in-flight cycle; a stopped session polls nothing.
        assert await poller.poll_session(session.id) == 0
        assert session.match_index == 1
        assert provider.calls_for("history") == ["Alpha", "Bravo"]
        assert timer.done()
        assert not poller.is_polling(session.id)
        assert len(ticker.intervals) == 1
