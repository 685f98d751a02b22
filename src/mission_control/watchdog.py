"""Detect stalled subagent runs and requeue each one at most once."""

from __future__ import annotations

import asyncio
import logging
import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any, Literal

from .config import MissionControlSettings
from .messaging import MessengerProtocol
from .mirror import normalize_whitespace, truncate_text
from .openclaw import SendOptions, SpawnCapability
from .records import RunLedger, SubagentRunRecord
from .status import is_running_run, run_stable_id, run_stalled_for_ms
from .storage import (
    EventJournal,
    JsonStateStore,
    WatchdogRunState,
    WatchdogState,
    record_event_quietly,
    watchdog_state_store,
)
from .timeutil import Clock, to_epoch_ms, utc_now

logger = logging.getLogger(__name__)

RequeueReason = Literal["manual", "watchdog"]

ACCEPTED_SPAWN_STATUSES = {"accepted", "ok", "queued", "running"}
RETRY_LABEL_MAX_LENGTH = 64
STATUS_POST_OPTIONS = SendOptions(
    thinking="minimal",
    timeout_seconds=45,
    exec_timeout_ms=60_000,
    accept_timeout_as_queued=True,
)


class RequeueError(RuntimeError):
    """Raised when a run cannot be requeued or the spawn response is unusable."""


def format_minutes(ms: float) -> str:
    if ms <= 0:
        return "0m"
    return f"{max(round(ms / 60000), 1)}m"


def safe_retry_label(base_label: str | None) -> str:
    normalized = (base_label or "subagent-retry").lower()
    normalized = re.sub(r"[^a-z0-9_-]+", "-", normalized)
    normalized = re.sub(r"-+", "-", normalized)
    normalized = re.sub(r"^[-_]+|[-_]+$", "", normalized)

    with_suffix = normalized if normalized.endswith("-retry") else f"{normalized or 'subagent'}-retry"
    if len(with_suffix) <= RETRY_LABEL_MAX_LENGTH:
        return with_suffix
    return re.sub(r"[-_]+$", "", with_suffix[:RETRY_LABEL_MAX_LENGTH]) or "subagent-retry"


def _string_field(value: Any, name: str) -> str | None:
    if not isinstance(value, dict):
        return None
    field_value = value.get(name)
    if isinstance(field_value, str) and field_value.strip():
        return field_value.strip()
    return None


def parse_spawn_response(raw_response: Any) -> tuple[str, str]:
    """Return ``(run_id, status)`` from a spawn response or raise :class:`RequeueError`."""

    run_id = _string_field(raw_response, "runId")
    status = _string_field(raw_response, "status") or "accepted"
    if not run_id:
        raise RequeueError(f"Spawn did not return a runId: {raw_response!r}")
    if status.lower() not in ACCEPTED_SPAWN_STATUSES:
        raise RequeueError(f'Spawn returned unexpected status "{status}" for run {run_id}')
    return run_id, status


@dataclass(slots=True)
class RequeueResult:
    dry_run: bool
    session_key: str
    summary_message: str
    reply: str
    requested: bool
    previous_run_id: str | None = None
    new_run_id: str | None = None
    new_session_key: str | None = None
    current_state: str | None = None
    requeue_payload: dict[str, Any] | None = None
    raw_response: Any = None


class RunRequeuer:
    """Builds and submits replacement runs for stalled or failed subagent work."""

    def __init__(self, settings: MissionControlSettings, spawner: SpawnCapability | None) -> None:
        self._settings = settings
        self._spawner = spawner

    def build_summary(
        self, run: SubagentRunRecord, reason: RequeueReason, stalled_for_ms: float | None = None
    ) -> str:
        task_preview = (
            truncate_text(normalize_whitespace(run.task), 220) if run.task else "[task unavailable]"
        )
        if reason == "watchdog":
            context_line = (
                f"Auto-retry triggered after stall ({format_minutes(stalled_for_ms or 0)} > "
                f"threshold {format_minutes(self._settings.stalled_threshold_ms)})."
            )
        else:
            context_line = "Manual retry requested from Mission Control."

        lines = [
            "Mission Control retry request",
            context_line,
            f"Original session: {run.child_session_key}",
            f"Original run: {run.run_id}" if run.run_id else None,
            f"Label: {run.label}" if run.label else None,
            f"Task summary: {task_preview}",
        ]
        return "\n".join(line for line in lines if line)

    def build_payload(self, run: SubagentRunRecord) -> tuple[dict[str, Any], str, str]:
        """Return ``(payload, retry_session_key, retry_label)``.

        Raises :class:`RequeueError` when the run carries no task text to replay.
        """

        task = (run.task or "").strip()
        if not task:
            raise RequeueError("Retry requires task metadata, but this run has no task text.")

        retry_session_key = f"agent:main:subagent:{uuid.uuid4()}"
        retry_label = safe_retry_label(run.label)
        payload: dict[str, Any] = {
            "sessionKey": retry_session_key,
            "message": task,
            "lane": "subagent",
            "deliver": False,
            "label": retry_label,
            "spawnedBy": (run.requester_session_key or "").strip() or self._settings.main_session_key,
            "idempotencyKey": str(uuid.uuid4()),
        }
        if run.run_timeout_seconds and run.run_timeout_seconds > 0:
            payload["timeout"] = math.floor(run.run_timeout_seconds)
        if run.requester_channel:
            payload["channel"] = run.requester_channel
        return payload, retry_session_key, retry_label

    async def requeue(
        self,
        run: SubagentRunRecord,
        *,
        reason: RequeueReason,
        dry_run: bool = False,
        stalled_for_ms: float | None = None,
    ) -> RequeueResult:
        summary = self.build_summary(run, reason, stalled_for_ms)
        payload, retry_session_key, retry_label = self.build_payload(run)

        if dry_run:
            return RequeueResult(
                dry_run=True,
                session_key=run.child_session_key,
                previous_run_id=run.run_id,
                summary_message=summary,
                requested=False,
                reply="Dry run only: requeue payload prepared (no retry run spawned).",
                new_session_key=retry_session_key,
                current_state="dry-run",
                requeue_payload=payload,
            )

        if self._spawner is None:
            raise RequeueError("OpenClaw gateway is unavailable; cannot requeue runs")

        await self._spawner.patch_session_model(retry_session_key, run.model)
        raw_response = await self._spawner.spawn(payload)
        new_run_id, status = parse_spawn_response(raw_response)

        return RequeueResult(
            dry_run=False,
            session_key=run.child_session_key,
            previous_run_id=run.run_id,
            summary_message=summary,
            requested=True,
            reply=f"Requeued successfully as run {new_run_id} ({retry_label}, state: {status}).",
            new_run_id=new_run_id,
            new_session_key=retry_session_key,
            current_state=status,
            requeue_payload=payload,
            raw_response=raw_response,
        )


@dataclass(slots=True)
class WatchdogRetryItem:
    session_key: str
    stalled_for_ms: float
    dry_run: bool
    requested: bool
    run_id: str | None = None
    skipped_reason: str | None = None
    summary_message: str | None = None
    new_run_id: str | None = None
    new_session_key: str | None = None
    current_state: str | None = None
    requeue_payload: dict[str, Any] | None = None


@dataclass(slots=True)
class WatchdogRunResult:
    checked_at: str
    threshold_ms: int
    scanned_runs: int
    stalled_runs: int
    retries: list[WatchdogRetryItem] = field(default_factory=list)
    skipped_scan: bool = False
    skipped_reason: str | None = None
    dry_run: bool = False
    force: bool = False

    @property
    def requested_count(self) -> int:
        return sum(1 for item in self.retries if item.requested)


def build_status_update(retries: list[WatchdogRetryItem], threshold_ms: int) -> str | None:
    if not retries:
        return None

    lines = ["Mission Control watchdog update", f"Stalled threshold: {format_minutes(threshold_ms)}."]
    for item in retries:
        run_label = f"run {item.run_id}" if item.run_id else f"session {item.session_key}"
        if item.requested:
            lines.append(
                f"- Retried {run_label} after {format_minutes(item.stalled_for_ms)} stall → "
                f"{item.new_run_id or 'new run pending'} ({item.current_state or 'accepted'})."
            )
        else:
            lines.append(
                f"- Could not retry {run_label} after {format_minutes(item.stalled_for_ms)} stall: "
                f"{item.skipped_reason or 'unknown reason'}."
            )
    return "\n".join(lines)


class StalledRunWatchdog:
    """Scan the run ledger and requeue stalled runs.

    Each run id is attempted at most once, ever. Dry runs preview payloads
    without touching persisted state or posting updates.
    """

    def __init__(
        self,
        settings: MissionControlSettings,
        requeuer: RunRequeuer,
        messenger: MessengerProtocol | None,
        *,
        ledger: RunLedger | None = None,
        store: JsonStateStore[WatchdogState] | None = None,
        journal: EventJournal | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self._requeuer = requeuer
        self._messenger = messenger
        self._ledger = ledger or RunLedger(settings.subagent_runs_file)
        self._store = store or watchdog_state_store(settings.watchdog_state_file)
        self._journal = journal
        self._clock = clock or utc_now
        self._pending_posts: set[asyncio.Task[None]] = set()

    @property
    def store(self) -> JsonStateStore[WatchdogState]:
        return self._store

    async def scan(
        self,
        *,
        force: bool = False,
        dry_run: bool = False,
        runs: list[SubagentRunRecord] | None = None,
    ) -> WatchdogRunResult:
        now = self._clock()
        now_ms = to_epoch_ms(now)
        checked_at = now.astimezone(timezone.utc).isoformat()
        threshold_ms = self._settings.stalled_threshold_ms

        if runs is None:
            runs = self._ledger.load()
        state = self._store.load()

        scan_cooldown_ms = self._settings.watchdog_scan_cooldown_ms
        if not force and state.last_scan_at and now_ms - state.last_scan_at < scan_cooldown_ms:
            remaining = math.ceil((scan_cooldown_ms - (now_ms - state.last_scan_at)) / 1000)
            return WatchdogRunResult(
                checked_at=checked_at,
                threshold_ms=threshold_ms,
                scanned_runs=len(runs),
                stalled_runs=0,
                skipped_scan=True,
                skipped_reason=f"scan-cooldown-{remaining}s",
                dry_run=dry_run,
                force=force,
            )

        candidates = [
            (run, run_stalled_for_ms(run, now_ms))
            for run in runs
            if run.child_session_key and is_running_run(run)
        ]
        candidates = [item for item in candidates if item[1] >= threshold_ms]
        candidates.sort(key=lambda item: item[1], reverse=True)

        retries: list[WatchdogRetryItem] = []
        attempted: list[WatchdogRetryItem] = []
        for run, stalled_for_ms in candidates:
            item, was_attempted = await self._handle_candidate(
                run, stalled_for_ms, state, now_ms, dry_run
            )
            retries.append(item)
            if was_attempted:
                attempted.append(item)

        if not dry_run:
            update = build_status_update(attempted, threshold_ms)
            if update:
                self._post_in_background(update)
            state.last_scan_at = now_ms
            self._store.save(state)

        logger.info(
            "Watchdog scan complete",
            extra={
                "scanned_runs": len(runs),
                "stalled_runs": len(candidates),
                "requested": sum(1 for item in retries if item.requested),
                "dry_run": dry_run,
            },
        )
        return WatchdogRunResult(
            checked_at=checked_at,
            threshold_ms=threshold_ms,
            scanned_runs=len(runs),
            stalled_runs=len(candidates),
            retries=retries,
            dry_run=dry_run,
            force=force,
        )

    async def _handle_candidate(
        self,
        run: SubagentRunRecord,
        stalled_for_ms: float,
        state: WatchdogState,
        now_ms: int,
        dry_run: bool,
    ) -> tuple[WatchdogRetryItem, bool]:
        stable_id = run_stable_id(run)
        run_state = state.runs.get(stable_id) or WatchdogRunState()
        base = {
            "run_id": run.run_id,
            "session_key": run.child_session_key,
            "stalled_for_ms": stalled_for_ms,
            "dry_run": dry_run,
        }

        if run_state.attempts >= 1:
            return (
                WatchdogRetryItem(**base, requested=False, skipped_reason="already-retried-once"),
                False,
            )

        retry_cooldown_ms = self._settings.watchdog_retry_cooldown_ms
        if run_state.last_attempt_at and now_ms - run_state.last_attempt_at < retry_cooldown_ms:
            remaining = math.ceil((retry_cooldown_ms - (now_ms - run_state.last_attempt_at)) / 1000)
            return (
                WatchdogRetryItem(
                    **base, requested=False, skipped_reason=f"retry-cooldown-{remaining}s"
                ),
                False,
            )

        try:
            result = await self._requeuer.requeue(
                run, reason="watchdog", dry_run=dry_run, stalled_for_ms=stalled_for_ms
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Watchdog requeue failed",
                extra={"run_id": stable_id, "session_key": run.child_session_key, "error": str(exc)},
            )
            if not dry_run:
                self._record_attempt(state, stable_id, run, now_ms, "requeue-failed", str(exc))
            return (
                WatchdogRetryItem(
                    **base, requested=False, skipped_reason=str(exc) or "requeue-failed"
                ),
                True,
            )

        if not dry_run:
            self._record_attempt(state, stable_id, run, now_ms, "requeued", result.new_run_id)

        item = WatchdogRetryItem(
            **base,
            requested=result.requested,
            skipped_reason=None if result.requested else "dry-run",
            summary_message=result.summary_message,
            new_run_id=result.new_run_id,
            new_session_key=result.new_session_key,
            current_state=result.current_state,
            requeue_payload=result.requeue_payload,
        )
        return item, True

    def _record_attempt(
        self,
        state: WatchdogState,
        stable_id: str,
        run: SubagentRunRecord,
        now_ms: int,
        outcome: str,
        detail: str | None,
    ) -> None:
        """Consume the run's single attempt on disk before anything else can fail."""

        state.runs[stable_id] = WatchdogRunState(
            attempts=1, last_attempt_at=now_ms, last_run_status=outcome
        )
        self._store.save(state)
        record_event_quietly(
            self._journal,
            session_id=f"run::{stable_id}",
            event_type="watchdog_retry",
            body={"run_id": stable_id, "outcome": outcome, "detail": detail},
            metadata={
                "run_id": stable_id,
                "session_key": run.child_session_key,
                "outcome": outcome,
            },
        )

    def _post_in_background(self, message: str) -> None:
        if self._messenger is None:
            logger.warning("Watchdog has no messenger; status update not posted")
            return
        task = asyncio.get_running_loop().create_task(self._post_status_update(message))
        self._pending_posts.add(task)
        task.add_done_callback(self._pending_posts.discard)

    async def _post_status_update(self, message: str) -> None:
        try:
            await self._messenger.send_to_main(message, STATUS_POST_OPTIONS)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Mission Control watchdog could not post status update to main session",
                extra={"error": str(exc)},
            )

    async def drain(self) -> None:
        """Wait for outstanding status-update posts."""

        pending = [task for task in self._pending_posts if not task.done()]
        if pending:
            await asyncio.gather(*pending)


__all__ = [
    "ACCEPTED_SPAWN_STATUSES",
    "RequeueError",
    "RequeueResult",
    "RunRequeuer",
    "StalledRunWatchdog",
    "WatchdogRetryItem",
    "WatchdogRunResult",
    "build_status_update",
    "format_minutes",
    "parse_spawn_response",
    "safe_retry_label",
]
