"""Operator actions on agent sessions: nudge, stop, retry, and template spawns."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Literal

from .config import MissionControlSettings
from .messaging import MessengerProtocol
from .mirror import MirrorResult, ReplyMirror
from .openclaw import SendOptions, SpawnCapability
from .records import RunLedger
from .status import find_latest_failed_run, find_session_by_id, find_session_by_key
from .storage import EventJournal, record_event_quietly
from .templates import TemplateLoader
from .timeutil import Clock, to_epoch_ms, utc_now
from .watchdog import RequeueError, RequeueResult, RunRequeuer, parse_spawn_response

logger = logging.getLogger(__name__)

ControlAction = Literal["nudge", "stop", "retry", "spawnTemplate"]
CONTROL_ACTIONS: tuple[str, ...] = ("nudge", "stop", "retry", "spawnTemplate")

NUDGE_PROMPT = (
    "Mission Control status check: reply with a short progress update covering what you "
    "finished, what you are working on now, and anything blocking you."
)
STOP_PROMPT = (
    "Mission Control stop request: stop working on the current task now. Do not start new "
    "work. Reply with a brief summary of what was completed and what remains."
)

CONTROL_SEND_OPTIONS = SendOptions(
    thinking="minimal",
    timeout_seconds=90,
    exec_timeout_ms=120_000,
    accept_timeout_as_queued=True,
)


@dataclass(slots=True)
class ControlResult:
    action: ControlAction
    session_id: str
    reply: str
    sent_at: str
    mirror: MirrorResult | None = None
    requeue: RequeueResult | None = None
    template_id: str | None = None
    new_run_id: str | None = None
    new_session_key: str | None = None


class AgentController:
    """Dispatches operator control actions for a session addressed by id."""

    def __init__(
        self,
        settings: MissionControlSettings,
        messenger: MessengerProtocol,
        mirror: ReplyMirror,
        requeuer: RunRequeuer,
        *,
        spawner: SpawnCapability | None = None,
        templates: TemplateLoader | None = None,
        ledger: RunLedger | None = None,
        journal: EventJournal | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self._messenger = messenger
        self._mirror = mirror
        self._requeuer = requeuer
        self._spawner = spawner
        self._templates = templates or TemplateLoader(settings.template_paths)
        self._ledger = ledger or RunLedger(settings.subagent_runs_file)
        self._journal = journal
        self._clock = clock or utc_now

    async def run(
        self,
        action: str,
        session_id: str,
        *,
        template_id: str | None = None,
        dry_run: bool = False,
    ) -> ControlResult:
        target = (session_id or "").strip()
        if not target:
            raise ValueError("session_id is required")

        if action == "nudge":
            result = await self.nudge(target)
        elif action == "stop":
            result = await self.stop(target)
        elif action == "retry":
            result = await self.retry(target, dry_run=dry_run)
        elif action == "spawnTemplate":
            if not template_id or not template_id.strip():
                raise ValueError("template_id is required for spawnTemplate")
            result = await self.spawn_template(target, template_id.strip())
        else:
            raise ValueError(
                f"Invalid action '{action}'. Allowed actions: {', '.join(CONTROL_ACTIONS)}."
            )

        if not dry_run:
            self._journal_action(result)
        return result

    async def nudge(self, session_id: str) -> ControlResult:
        return await self._send_prompt("nudge", session_id, NUDGE_PROMPT)

    async def stop(self, session_id: str) -> ControlResult:
        return await self._send_prompt("stop", session_id, STOP_PROMPT)

    async def _send_prompt(self, action: ControlAction, session_id: str, prompt: str) -> ControlResult:
        outcome = await self._mirror.send_with_mirror(
            session_id, prompt, action_label=action, options=CONTROL_SEND_OPTIONS
        )
        logger.info(
            "Control prompt delivered",
            extra={"action": action, "session_id": session_id, "mirrored": outcome.mirror.mirrored},
        )
        return ControlResult(
            action=action,
            session_id=session_id,
            reply=outcome.reply,
            sent_at=self._clock().isoformat(),
            mirror=outcome.mirror,
        )

    async def _resolve_session_key(self, session_id: str) -> str:
        sessions = await self._messenger.load_sessions()
        session = find_session_by_id(sessions, session_id) or find_session_by_key(sessions, session_id)
        if session is not None:
            return session.key
        # Orphan run columns are addressed by their child session key.
        if session_id.startswith("agent:"):
            return session_id
        raise ValueError(f"Unknown session '{session_id}'")

    async def retry(self, session_id: str, *, dry_run: bool = False) -> ControlResult:
        """Requeue the newest failed run for the session; watchdog state is left alone."""

        session_key = await self._resolve_session_key(session_id)
        run = find_latest_failed_run(self._ledger.load(), session_key, to_epoch_ms(self._clock()))
        if run is None:
            raise RequeueError(f"No failed run found for session {session_key}")

        result = await self._requeuer.requeue(run, reason="manual", dry_run=dry_run)
        return ControlResult(
            action="retry",
            session_id=session_id,
            reply=result.reply,
            sent_at=self._clock().isoformat(),
            requeue=result,
            new_run_id=result.new_run_id,
            new_session_key=result.new_session_key,
        )

    def build_template_payload(self, template_id: str, spawned_by: str) -> dict[str, Any]:
        templates = self._templates.load_all()
        template = templates.get(template_id)
        if template is None:
            raise ValueError(
                f"Invalid template '{template_id}'. Allowed templates: {', '.join(sorted(templates))}."
            )

        payload: dict[str, Any] = {
            "sessionKey": f"agent:main:subagent:{uuid.uuid4()}",
            "message": template.prompt,
            "lane": "subagent",
            "deliver": False,
            "label": template.run_label,
            "spawnedBy": spawned_by,
            "idempotencyKey": str(uuid.uuid4()),
        }
        if template.thinking:
            payload["thinking"] = template.thinking
        return payload

    async def spawn_template(self, session_id: str, template_id: str) -> ControlResult:
        if self._spawner is None:
            raise RequeueError("OpenClaw gateway is unavailable; cannot spawn subagents")

        session_key = await self._resolve_session_key(session_id)
        payload = self.build_template_payload(template_id, session_key)
        new_run_id, status = parse_spawn_response(await self._spawner.spawn(payload))

        return ControlResult(
            action="spawnTemplate",
            session_id=session_id,
            reply=f"Spawned {payload['label']} as run {new_run_id} (state: {status}).",
            sent_at=self._clock().isoformat(),
            template_id=template_id,
            new_run_id=new_run_id,
            new_session_key=payload["sessionKey"],
        )

    def _journal_action(self, result: ControlResult) -> None:
        record_event_quietly(
            self._journal,
            session_id=result.session_id,
            event_type="control_action",
            body={
                "action": result.action,
                "reply": result.reply[:2000],
                "template_id": result.template_id,
                "new_run_id": result.new_run_id,
            },
            metadata={
                "action": result.action,
                "template_id": result.template_id,
                "new_run_id": result.new_run_id,
            },
        )


__all__ = [
    "AgentController",
    "CONTROL_ACTIONS",
    "CONTROL_SEND_OPTIONS",
    "ControlAction",
    "ControlResult",
    "NUDGE_PROMPT",
    "STOP_PROMPT",
]
