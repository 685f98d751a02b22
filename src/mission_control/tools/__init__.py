"""Tool registration for Mission Control MCP."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..control import CONTROL_ACTIONS, AgentController
from ..mirror import ReplyMirror
from ..openclaw import SendOptions
from ..snapshot import SnapshotBuilder
from ..timeutil import utc_now
from ..watchdog import StalledRunWatchdog

logger = logging.getLogger(__name__)

SEND_MESSAGE_OPTIONS = SendOptions(
    thinking="minimal",
    timeout_seconds=180,
    exec_timeout_ms=200_000,
    accept_timeout_as_queued=True,
)


@dataclass(slots=True)
class ToolHandles:
    agents_snapshot: Any
    send_message: Any
    run_watchdog: Any
    agent_control: Any


def register_tools(
    server: FastMCP,
    *,
    snapshot_builder: SnapshotBuilder,
    mirror: ReplyMirror,
    watchdog: StalledRunWatchdog,
    controller: AgentController,
) -> ToolHandles:
    """Register Mission Control's MCP tools on the server."""

    async def _agents_snapshot(context: Context | None = None) -> dict[str, Any]:
        """Build the fused per-agent dashboard snapshot."""

        snapshot = await snapshot_builder.build()
        _emit_log(
            context,
            "debug",
            "Built agents snapshot",
            extra={"agents": len(snapshot.agents), "limitations": len(snapshot.limitations)},
        )
        return {"ok": True, **asdict(snapshot)}

    async def _send_message(
        session_id: str,
        message: str,
        *,
        action_label: str = "message",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Send a message to a session and mirror subagent replies to the main session."""

        target = (session_id or "").strip()
        if not target:
            raise ValueError("session_id is required")

        result = await mirror.send_with_mirror(
            target, message, action_label=action_label, options=SEND_MESSAGE_OPTIONS
        )
        _emit_log(
            context,
            "info",
            "Message delivered",
            extra={
                "session_id": target,
                "mirrored": result.mirror.mirrored,
                "mirror_skipped_reason": result.mirror.skipped_reason,
            },
        )
        return {
            "ok": True,
            "session_id": target,
            "reply": result.reply,
            "mirror": asdict(result.mirror),
            "sent_at": utc_now().isoformat(),
        }

    async def _run_watchdog(
        *,
        dry_run: bool = False,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Scan the run ledger for stalled runs and requeue each at most once."""

        result = await watchdog.scan(force=force, dry_run=dry_run)
        _emit_log(
            context,
            "info" if result.requested_count else "debug",
            "Watchdog scan",
            extra={
                "dry_run": dry_run,
                "force": force,
                "skipped_scan": result.skipped_scan,
                "stalled_runs": result.stalled_runs,
                "requested": result.requested_count,
            },
        )
        return {"ok": True, **asdict(result), "requested_count": result.requested_count}

    async def _agent_control(
        action: str,
        session_id: str,
        *,
        template_id: str | None = None,
        dry_run: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run an operator control action against a session."""

        result = await controller.run(
            action.strip(), session_id, template_id=template_id, dry_run=dry_run
        )
        _emit_log(
            context,
            "info",
            "Control executed",
            extra={"action": result.action, "session_id": result.session_id},
        )
        return {"ok": True, "message": "Control executed", **asdict(result)}

    tool_snapshot = server.tool(
        name="agents_snapshot",
        description=(
            "Return one column per active agent or subagent session with fused status, "
            "recent transcript messages, and any data-source limitations."
        ),
    )(_agents_snapshot)

    tool_send = server.tool(
        name="send_message",
        description=(
            "Send a message to an agent session by session id. Subagent replies are "
            "mirrored to the main session subject to cooldown and dedupe."
        ),
    )(_send_message)

    tool_watchdog = server.tool(
        name="run_watchdog",
        description=(
            "Scan for stalled subagent runs and requeue each one at most once. Use "
            "dry_run to preview payloads and force to bypass the scan cooldown."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Non-dry-run scans spawn replacement runs and post to the main session",
            }
        },
    )(_run_watchdog)

    tool_control = server.tool(
        name="agent_control",
        description=(
            f"Run an operator action ({', '.join(CONTROL_ACTIONS)}) against a session. "
            "spawnTemplate requires template_id; retry supports dry_run."
        ),
    )(_agent_control)

    return ToolHandles(
        agents_snapshot=tool_snapshot,
        send_message=tool_send,
        run_watchdog=tool_watchdog,
        agent_control=tool_control,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
