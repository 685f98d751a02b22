"""FastMCP server bootstrap for Mission Control."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import MissionControlSettings, get_settings
from .control import AgentController
from .messaging import Messenger
from .mirror import ReplyMirror
from .openclaw import OpenclawGateway, OpenclawNotFoundError, OpenclawRunner, OpenclawRunnerError
from .records import RunLedger, SessionRegistry
from .snapshot import SnapshotBuilder
from .storage import (
    EventJournal,
    JournalUnavailableError,
    mirror_state_store,
    watchdog_state_store,
)
from .templates import TemplateLoadError, TemplateLoader
from .tools import register_tools
from .transcripts import TranscriptReader
from .watchdog import RunRequeuer, StalledRunWatchdog


def configure_logging(level: str) -> None:
    """Configure root logging for the Mission Control server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[MissionControlSettings] = None,
    runner: OpenclawRunner | None = None,
    gateway: OpenclawGateway | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with tools and the status resource."""

    settings = settings or get_settings()

    runner_provided = runner is not None
    openclaw_metadata: dict[str, Any] = {
        "available": False,
        "version": None,
        "error": None,
    }

    if not runner_provided:
        try:
            runner = OpenclawRunner(Path(settings.openclaw_path) if settings.openclaw_path else None)
            openclaw_metadata["available"] = True
            version_result = _run_sync(runner.version())
            if version_result.ok:
                openclaw_metadata["version"] = version_result.stdout.strip()
            else:
                openclaw_metadata["error"] = (
                    version_result.stderr.strip() or "openclaw --version failed"
                )
        except OpenclawNotFoundError as exc:
            openclaw_metadata["error"] = str(exc)
            runner = None
        except OpenclawRunnerError as exc:
            openclaw_metadata["error"] = str(exc)
    else:
        openclaw_metadata["available"] = True

    if gateway is None and runner is not None:
        gateway = OpenclawGateway(runner, call_timeout_ms=settings.gateway_call_timeout_ms)

    journal: EventJournal | None = None
    journal_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "mission_control_events",
        "error": None,
    }

    try:
        journal = EventJournal(settings.chroma_persist_path)
        journal.ping()
        journal_metadata["available"] = True
    except JournalUnavailableError as exc:
        journal_metadata["error"] = str(exc)
        journal = None

    registry = SessionRegistry(settings, runner=runner)
    ledger = RunLedger(settings.subagent_runs_file)
    messenger = Messenger(gateway, registry)
    mirror_store = mirror_state_store(settings.mirror_state_file)
    watchdog_store = watchdog_state_store(settings.watchdog_state_file)
    template_loader = TemplateLoader(settings.template_paths)

    mirror = ReplyMirror(settings, messenger, store=mirror_store, journal=journal)
    requeuer = RunRequeuer(settings, gateway)
    watchdog = StalledRunWatchdog(
        settings, requeuer, messenger, ledger=ledger, store=watchdog_store, journal=journal
    )
    snapshot_builder = SnapshotBuilder(
        settings, registry, TranscriptReader(settings), ledger=ledger, watchdog=watchdog
    )
    controller = AgentController(
        settings,
        messenger,
        mirror,
        requeuer,
        spawner=gateway,
        templates=template_loader,
        ledger=ledger,
        journal=journal,
    )

    server = FastMCP(
        name="Mission Control MCP",
        version=__version__,
        instructions=(
            "Mission Control monitors OpenClaw agent and subagent sessions. Use the "
            "provided tools to read the fused agent snapshot, message sessions, run the "
            "stalled-run watchdog, and issue operator control actions."
        ),
    )

    handles = register_tools(
        server,
        snapshot_builder=snapshot_builder,
        mirror=mirror,
        watchdog=watchdog,
        controller=controller,
    )

    @server.resource(
        "resource://mission-control/status",
        name="mission_control_status",
        title="Mission Control MCP Status",
        description="Provides the current runtime status for the Mission Control MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        try:
            template_ids = sorted(template_loader.load_all().keys())
            template_error: str | None = None
        except TemplateLoadError as exc:
            template_ids = []
            template_error = str(exc)

        watchdog_state = watchdog_store.load()
        mirror_state = mirror_store.load()
        run_status_counts: dict[str, int] = {}
        for run_state in watchdog_state.runs.values():
            status = run_state.last_run_status or "unknown"
            run_status_counts[status] = run_status_counts.get(status, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "openclaw": {
                "path": settings.openclaw_path,
                **openclaw_metadata,
            },
            "sources": {
                "sessions_dir": str(settings.sessions_dir),
                "sessions_index_file": str(settings.sessions_index_file),
                "subagent_runs_file": str(settings.subagent_runs_file),
            },
            "storage": {
                "journal": journal_metadata,
                "state_dir": str(settings.state_dir),
            },
            "templates": {
                "count": len(template_ids),
                "ids": template_ids,
                "error": template_error,
            },
            "watchdog": {
                "last_scan_at": watchdog_state.last_scan_at,
                "tracked_runs": len(watchdog_state.runs),
                "by_status": run_status_counts,
                "threshold_ms": settings.stalled_threshold_ms,
            },
            "mirror": {
                "tracked_sessions": len(mirror_state.by_session),
                "cooldown_ms": settings.mirror_cooldown_ms,
                "dedupe_window_ms": settings.mirror_dedupe_window_ms,
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "openclaw_runner", runner)
    setattr(server, "openclaw_metadata", openclaw_metadata)
    setattr(server, "gateway", gateway)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "watchdog", watchdog)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Mission Control MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Mission Control MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "openclaw_available": getattr(server, "openclaw_metadata", {}).get("available"),
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
