"""CLI command tests (track needs a live provider and is not covered)."""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from session_tracker.cli import main, parse_player
from session_tracker.core.models import DerivedMetrics
from session_tracker.providers.tracker import TrackerStatsClient
from session_tracker.store.sqlite import SqliteSnapshotStore

T0 = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)


class TestParsePlayer:
    def test_platform_and_handle(self):
        assert parse_player("xbl:Some Handle") == ("xbl", "Some Handle")
        assert parse_player("steam:a:b") == ("steam", "a:b")

    @pytest.mark.parametrize("value", ["nohandle", ":handle", "xbl:", "xbl:  "])
    def test_rejects_malformed(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_player(value)


class TestExtract:
    def test_prints_metrics(self, tmp_path, capsys):
        path = tmp_path / "profile.json"
        path.write_text(
            json.dumps(
                {
                    "stats": {
                        "overview": {"wins": 7, "goals": 30},
                        "totalMatchesPlayed": 10,
                        "ranked": {"double": {"mmr": 980}},
                    }
                }
            ),
            encoding="utf-8",
        )

        assert main(["extract", str(path), "--mode", "4v4"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["wins"] == 7
        assert data["losses"] == 3
        assert data["losses_derived"] is True
        assert data["rating"] is None

    def test_unreadable_file(self, tmp_path):
        assert main(["extract", str(tmp_path / "missing.json")]) == 1


class TestReport:
    def test_prints_session_deltas(self, tmp_path, capsys):
        db_path = tmp_path / "tracker.sqlite"
        store = SqliteSnapshotStore(db_path)
        session = store.create_session("2v2", 60, [("xbl", "A")])
        player = session.players[0]
        store.insert_snapshot(session.id, player.id, T0, 0, {}, DerivedMetrics(wins=5, losses=2))
        store.insert_snapshot(
            session.id, player.id, T0 + timedelta(minutes=20), 2, {}, DerivedMetrics(wins=7, losses=2)
        )
        session.match_index = 2
        store.save_session(session)
        store.close()

        assert main(["report", "--session", str(session.id), "--db", str(db_path)]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["mode"] == "2v2"
        assert report["match_index"] == 2
        assert report["players"]["xbl:A"]["wins"] == 2
        assert report["players"]["xbl:A"]["win_rate"] == 1.0
        assert report["team"]["wins"] == 2

    def test_unknown_session(self, tmp_path):
        assert main(["report", "--session", "42", "--db", str(tmp_path / "empty.sqlite")]) == 1

    def test_includes_stored_team_records(self, tmp_path, capsys):
        db_path = tmp_path / "tracker.sqlite"
        store = SqliteSnapshotStore(db_path)
        team = store.create_team("Duo", "2v2", [("xbl", "A")])
        session = store.create_session("2v2", 60, [("xbl", "A")], team_id=team.id)
        store.insert_team_stats(session.id, team.id, T0, 11, {}, {"wins": 4.0}, {"wins": "high"})
        store.close()

        assert main(["report", "--session", str(session.id), "--db", str(db_path)]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["team_id"] == team.id
        assert report["records"] == {"wins": "high"}


class TestTeam:
    def test_prints_history_and_trend(self, tmp_path, capsys):
        db_path = tmp_path / "tracker.sqlite"
        store = SqliteSnapshotStore(db_path)
        team = store.create_team("Duo", "2v2", [("xbl", "A"), ("steam", "B")])
        for hours, win_rate in ((2, 1.0), (1, 0.5)):
            session = store.create_session("2v2", 60, team.players, team_id=team.id)
            store.insert_team_stats(
                session.id, team.id, T0 + timedelta(hours=hours), 11, {}, {"win_rate": win_rate}, {}
            )
        store.close()

        assert main(["team", "--team", str(team.id), "--db", str(db_path)]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["name"] == "Duo"
        assert output["players"] == ["xbl:A", "steam:B"]
        assert [s["team"]["win_rate"] for s in output["sessions"]] == [0.5, 1.0]
        assert output["trends"]["first_half"]["win_rate"] == 0.5
        assert output["trends"]["second_half"]["win_rate"] == 1.0

    def test_unknown_team(self, tmp_path):
        assert main(["team", "--team", "7", "--db", str(tmp_path / "empty.sqlite")]) == 1


class TestStatus:
    @pytest.fixture
    def status_code(self, monkeypatch):
        answer = {"code": 200}

        def handler(request):
            return httpx.Response(answer["code"], json={})

        def from_settings(cls, settings=None, cooldown=None):
            return cls(
                api_key="secret",
                base_url="https://stats.example.test/profile",
                transport=httpx.MockTransport(handler),
            )

        monkeypatch.setattr(TrackerStatsClient, "from_settings", classmethod(from_settings))
        return answer

    def test_reachable(self, status_code, capsys):
        assert main(["status", "--player", "xbl:Handle"]) == 0
        assert json.loads(capsys.readouterr().out)["ok"] is True

    def test_error_status_exits_non_zero(self, status_code, capsys):
        status_code["code"] = 404
        assert main(["status", "--player", "xbl:Nobody", "--force"]) == 1
        output = json.loads(capsys.readouterr().out)
        assert output["status_code"] == 404
        assert output["error"] == "Stats API error 404"
