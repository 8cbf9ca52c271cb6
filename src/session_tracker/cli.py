#!/usr/bin/env python3
"""
Command-line interface for session tracking.

Usage:
    session-tracker track --mode 2v2 --interval 60 --player xbl:Handle --player steam:Other
    session-tracker track --mode 3v3 --player epic:Handle --duration 1800
    session-tracker track --mode 2v2 --player xbl:Handle --player steam:Other --team-name "Night Shift"
    session-tracker extract payload.json --mode 2v2
    session-tracker report --session 3
    session-tracker team --team 1
    session-tracker status --player xbl:Handle --force
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .core.config import get_settings
from .core.http import ConfigurationError
from .core.types import MODE_REGISTRY

logger = logging.getLogger("session_tracker.cli")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_player(value: str) -> tuple[str, str]:
    """Parse a ``platform:handle`` argument."""
    platform, sep, handle = value.partition(":")
    if not sep or not platform.strip() or not handle.strip():
        raise argparse.ArgumentTypeError(f"Expected platform:handle, got {value!r}")
    return platform.strip(), handle.strip()


def get_store(db_path: Optional[str]):
    """Get the SQLite snapshot store."""
    from .store.sqlite import SqliteSnapshotStore

    return SqliteSnapshotStore(db_path or get_settings().database_path)


async def cmd_track_async(args: argparse.Namespace) -> int:
    """Run a live session until interrupted (or --duration elapses), then end it."""
    from .polling.poller import SessionPoller
    from .providers.tracker import TrackerStatsClient

    settings = get_settings()
    store = get_store(args.db)
    provider = TrackerStatsClient.from_settings(settings)
    poller = SessionPoller(provider, store, settings=settings)

    try:
        session = await poller.start_session(
            args.mode,
            args.player,
            args.interval,
            team_id=args.team,
            team_name=args.team_name,
        )
        print(f"Tracking session {session.id} ({session.mode.value}); Ctrl+C to stop")
        try:
            if args.duration:
                await asyncio.sleep(args.duration)
            else:
                await asyncio.Event().wait()
        finally:
            await poller.end_session(session.id)
            print(f"Session {session.id} ended at match index {session.match_index}")
        return 0
    except ConfigurationError as e:
        logger.error(f"Provider not configured: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Cannot start session: {e}")
        return 1
    finally:
        await poller.shutdown()
        await provider.close()
        store.close()


def cmd_track(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(cmd_track_async(args))
    except KeyboardInterrupt:
        return 0


def cmd_extract(args: argparse.Namespace) -> int:
    """Print the derived metrics for a saved provider payload."""
    from .metrics.extractor import extract_metrics

    path = Path(args.file)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Could not read {path}: {e}")
        return 1

    metrics = extract_metrics(payload, args.mode)
    print(metrics.model_dump_json(indent=2))
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    """Print per-player and team deltas for a stored session."""
    from .services.session_stats import SessionStatsService

    store = get_store(args.db)
    try:
        session = store.get_session(args.session)
        if session is None:
            logger.error(f"Unknown session: {args.session}")
            return 1

        summary = SessionStatsService(store).team_summary(session)
        handles = {player.id: f"{player.platform}:{player.handle}" for player in session.players}
        report = summary.to_dict()
        report["mode"] = session.mode.value
        report["match_index"] = session.match_index
        report["state"] = session.state.value
        report["players"] = {
            handles.get(pid, str(pid)): delta for pid, delta in report["players"].items()
        }
        report["team_id"] = session.team_id
        stored = store.get_session_team_stats(session.id)
        report["records"] = stored.records if stored else None
        print(json.dumps(report, indent=2))
        return 0
    finally:
        store.close()


def cmd_team(args: argparse.Namespace) -> int:
    """Print a team's stored session results, oldest first, with its trend."""
    from .services.session_stats import SessionStatsService

    store = get_store(args.db)
    try:
        team = store.get_team(args.team)
        if team is None:
            logger.error(f"Unknown team: {args.team}")
            return 1

        service = SessionStatsService(store)
        output = {
            "id": team.id,
            "name": team.name,
            "mode": team.mode.value,
            "players": [f"{platform}:{handle}" for platform, handle in team.players],
            "sessions": [stats.to_dict() for stats in service.team_history(team.id)],
            "trends": service.team_trends(team.id).to_dict(),
        }
        print(json.dumps(output, indent=2))
        return 0
    finally:
        store.close()


async def cmd_status_async(args: argparse.Namespace) -> int:
    """Check whether the stats provider answers for one player."""
    from .providers.tracker import TrackerStatsClient

    platform, handle = args.player
    async with TrackerStatsClient.from_settings() as client:
        try:
            status = await client.check_status(platform, handle, force=args.force)
        except ConfigurationError as e:
            logger.error(f"Provider not configured: {e}")
            return 1
    print(json.dumps(status.to_dict(), indent=2))
    return 0 if status.ok else 1


def cmd_status(args: argparse.Namespace) -> int:
    return asyncio.run(cmd_status_async(args))


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="session-tracker",
        description="Live session tracking for ranked players",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # track command
    track_parser = subparsers.add_parser("track", help="Track a live session")
    track_parser.add_argument(
        "--mode",
        default=settings.default_mode,
        choices=list(MODE_REGISTRY),
        help="Game mode",
    )
    track_parser.add_argument(
        "--interval",
        type=int,
        default=settings.polling_interval_seconds,
        help="Polling interval in seconds",
    )
    track_parser.add_argument(
        "--player",
        type=parse_player,
        action="append",
        required=True,
        help="Player as platform:handle (repeatable)",
    )
    track_parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    track_parser.add_argument("--team", type=int, help="Record the session for this team ID")
    track_parser.add_argument(
        "--team-name",
        help="Create a team with this name unless the roster already has one",
    )
    track_parser.add_argument("--db", help="SQLite database path")

    # extract command
    extract_parser = subparsers.add_parser("extract", help="Extract metrics from a saved payload")
    extract_parser.add_argument("file", help="Path to a provider profile JSON payload")
    extract_parser.add_argument("--mode", choices=list(MODE_REGISTRY), help="Game mode hint")

    # report command
    report_parser = subparsers.add_parser("report", help="Show deltas for a stored session")
    report_parser.add_argument("--session", type=int, required=True, help="Session ID")
    report_parser.add_argument("--db", help="SQLite database path")

    # team command
    team_parser = subparsers.add_parser("team", help="Show a team's session history and trend")
    team_parser.add_argument("--team", type=int, required=True, help="Team ID")
    team_parser.add_argument("--db", help="SQLite database path")

    # status command
    status_parser = subparsers.add_parser("status", help="Check the stats provider for one player")
    status_parser.add_argument(
        "--player",
        type=parse_player,
        required=True,
        help="Player as platform:handle",
    )
    status_parser.add_argument(
        "--force",
        action="store_true",
        help="Send the request even while cooling down",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "track": cmd_track,
        "extract": cmd_extract,
        "report": cmd_report,
        "team": cmd_team,
        "status": cmd_status,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
