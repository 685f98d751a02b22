"""Mission Control diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path

from mission_control.config import MissionControlSettings, get_settings
from mission_control.messaging import Messenger
from mission_control.openclaw import OpenclawGateway, OpenclawNotFoundError, OpenclawRunner
from mission_control.records import RunLedger, SessionRegistry
from mission_control.snapshot import SnapshotBuilder
from mission_control.storage import (
    EventJournal,
    JournalUnavailableError,
    mirror_state_store,
    watchdog_state_store,
)
from mission_control.transcripts import TranscriptReader
from mission_control.watchdog import RunRequeuer, StalledRunWatchdog


def load_runner(settings: MissionControlSettings) -> OpenclawRunner | None:
    try:
        return OpenclawRunner(Path(settings.openclaw_path) if settings.openclaw_path else None)
    except OpenclawNotFoundError as exc:
        print(f"OpenClaw unavailable: {exc}", file=sys.stderr)
        return None


def load_journal(settings: MissionControlSettings) -> EventJournal:
    try:
        journal = EventJournal(settings.chroma_persist_path)
        journal.ping()
        return journal
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)


def cmd_snapshot(args: argparse.Namespace) -> None:
    settings = get_settings()
    builder = SnapshotBuilder(
        settings,
        SessionRegistry(settings, runner=load_runner(settings)),
        TranscriptReader(settings),
    )
    snapshot = asyncio.run(builder.build())

    if args.json:
        print(json.dumps(asdict(snapshot), indent=2))
        return
    for column in snapshot.agents:
        print(
            f"{column.session_short_id:<8} [{column.status}] {column.name} "
            f"({column.source}, {len(column.messages)} messages)"
        )
    for limitation in snapshot.limitations:
        print(f"! {limitation}")


def cmd_watchdog(args: argparse.Namespace) -> None:
    settings = get_settings()
    runner = load_runner(settings)
    gateway = (
        OpenclawGateway(runner, call_timeout_ms=settings.gateway_call_timeout_ms)
        if runner is not None
        else None
    )
    watchdog = StalledRunWatchdog(
        settings,
        RunRequeuer(settings, gateway),
        Messenger(gateway, SessionRegistry(settings, runner=runner)),
        ledger=RunLedger(settings.subagent_runs_file),
    )

    async def _scan():
        result = await watchdog.scan(force=args.force, dry_run=args.dry_run)
        await watchdog.drain()
        return result

    result = asyncio.run(_scan())
    print(json.dumps(asdict(result), indent=2))


def cmd_state(args: argparse.Namespace) -> None:
    settings = get_settings()
    mirror_store = mirror_state_store(settings.mirror_state_file)
    watchdog_store = watchdog_state_store(settings.watchdog_state_file)
    payload = {
        "mirror": {
            "path": str(mirror_store.path),
            "state": mirror_store.load().model_dump(by_alias=True, exclude_none=True),
        },
        "watchdog": {
            "path": str(watchdog_store.path),
            "state": watchdog_store.load().model_dump(by_alias=True, exclude_none=True),
        },
    }
    print(json.dumps(payload, indent=2))


def cmd_journal(args: argparse.Namespace) -> None:
    settings = get_settings()
    journal = load_journal(settings)

    filters: dict[str, str] = {}
    if args.event_type:
        filters["event_type"] = args.event_type
    if args.session_id:
        filters["session_id"] = args.session_id
    if len(filters) > 1:
        where = {"$and": [{key: value} for key, value in filters.items()]}
    else:
        where = filters or None

    try:
        events = journal.search_events(args.query, filters=where, limit=args.limit)
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)

    payload = [
        {
            "event_id": event.id,
            "session_id": event.session_id,
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat(),
            "metadata": event.metadata,
            "excerpt": event.document[:200],
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mission Control diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_snapshot = sub.add_parser("snapshot", help="Build the agents snapshot without running the watchdog")
    p_snapshot.add_argument("--json", action="store_true", help="Output JSON")
    p_snapshot.set_defaults(func=cmd_snapshot)

    p_watchdog = sub.add_parser("watchdog", help="Run one stalled-run watchdog scan")
    p_watchdog.add_argument("--dry-run", action="store_true", help="Preview payloads only")
    p_watchdog.add_argument("--force", action="store_true", help="Bypass the scan cooldown")
    p_watchdog.set_defaults(func=cmd_watchdog)

    p_state = sub.add_parser("state", help="Dump persisted mirror and watchdog state")
    p_state.set_defaults(func=cmd_state)

    p_journal = sub.add_parser("journal", help="List journal events")
    p_journal.add_argument("--event-type")
    p_journal.add_argument("--session-id")
    p_journal.add_argument("--query", help="Case-insensitive keyword filter")
    p_journal.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_journal.set_defaults(func=cmd_journal)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
