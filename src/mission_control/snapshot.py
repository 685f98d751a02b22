"""Assemble the per-agent dashboard view from sessions, runs, and transcripts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from .config import MissionControlSettings
from .openclaw import OpenclawRunnerError
from .records import RecordLoadError, RunLedger, SessionRecord, SessionRegistry, SubagentRunRecord
from .status import (
    AgentStatus,
    derive_run_status,
    derive_status,
    latest_runs_by_session_key,
    resolve_agent_name,
    runtime_from_key,
    short_id_from_key,
)
from .timeutil import Clock, iso_from_ms, timestamp_to_ms, to_epoch_ms, utc_now
from .transcripts import TranscriptMessage, TranscriptReader
from .watchdog import StalledRunWatchdog

logger = logging.getLogger(__name__)

SESSIONS_UNAVAILABLE = "Could not load active OpenClaw sessions metadata."
NO_AGENTS_FOUND = "No active agent/subagent sessions were found in local OpenClaw artifacts."

ColumnSource = Literal["session", "subagent-run"]


@dataclass(slots=True)
class AgentColumn:
    id: str
    name: str
    session_short_id: str
    session_key: str
    status: AgentStatus
    runtime: str
    source: ColumnSource
    can_send: bool
    session_id: str | None = None
    model: str | None = None
    last_activity: str | None = None
    messages: list[TranscriptMessage] = field(default_factory=list)


@dataclass(slots=True)
class AgentsSnapshot:
    agents: list[AgentColumn]
    last_updated: str
    limitations: list[str] = field(default_factory=list)


def is_dashboard_session(session: SessionRecord) -> bool:
    key = session.key
    return key.startswith("agent:") and ":run:" not in key and ":cron:" not in key


def last_activity_ms(updated_at: float | None, messages: list[TranscriptMessage]) -> float | None:
    newest = timestamp_to_ms(messages[-1].timestamp) if messages else None
    if newest is not None and updated_at is not None:
        return max(updated_at, newest)
    return newest if newest is not None else updated_at


class SnapshotBuilder:
    """Builds :class:`AgentsSnapshot` instances; load failures become limitations."""

    def __init__(
        self,
        settings: MissionControlSettings,
        registry: SessionRegistry,
        reader: TranscriptReader,
        *,
        ledger: RunLedger | None = None,
        watchdog: StalledRunWatchdog | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._reader = reader
        self._ledger = ledger or RunLedger(settings.subagent_runs_file)
        self._watchdog = watchdog
        self._clock = clock or utc_now

    async def _load_sessions(self, limitations: list[str]) -> list[SessionRecord]:
        try:
            return await self._registry.load()
        except (RecordLoadError, OpenclawRunnerError, ValueError) as exc:
            logger.error("Failed to load OpenClaw sessions", extra={"error": str(exc)})
            limitations.append(SESSIONS_UNAVAILABLE)
            return []

    def _load_runs(self, limitations: list[str]) -> list[SubagentRunRecord]:
        try:
            return self._ledger.load()
        except RecordLoadError as exc:
            logger.error("Failed to load subagent runs", extra={"error": str(exc)})
            limitations.append(
                f"Could not read subagent run metadata from {self._ledger.path}."
            )
            return []

    async def _run_watchdog(self, runs: list[SubagentRunRecord], limitations: list[str]) -> None:
        if self._watchdog is None:
            return
        result = await self._watchdog.scan(force=False, dry_run=False, runs=runs)
        retried = result.requested_count
        if retried > 0:
            plural = "" if retried == 1 else "s"
            limitations.append(
                f"Watchdog retried {retried} stalled run{plural} and posted an update to Main Agent."
            )

    def select_sessions(self, sessions: list[SessionRecord]) -> list[SessionRecord]:
        """Top-K sessions by recency, with the main session always included."""

        base = sorted(
            (session for session in sessions if is_dashboard_session(session)),
            key=lambda session: session.updated_at or 0,
            reverse=True,
        )
        primary = base[: self._settings.max_agent_columns]
        main_key = self._settings.main_session_key
        main_session = next((session for session in base if session.key == main_key), None)
        if main_session is not None and all(session.key != main_key for session in primary):
            primary.insert(0, main_session)
        return primary

    def _session_column(
        self,
        session: SessionRecord,
        runs_by_key: dict[str, SubagentRunRecord],
        now_ms: int,
    ) -> AgentColumn:
        messages = self._reader.read_messages(session.session_id, session.session_file)
        model = session.model or self._reader.read_model(session.session_id, session.session_file)
        return AgentColumn(
            id=session.session_id or session.key,
            name=resolve_agent_name(session.key, runs_by_key.get(session.key)),
            session_short_id=short_id_from_key(session.key),
            session_id=session.session_id,
            session_key=session.key,
            status=derive_status(
                session,
                runs_by_key,
                now_ms,
                recent_age_ms=self._settings.recent_age_ms,
                idle_age_ms=self._settings.idle_age_ms,
            ),
            model=model,
            runtime=runtime_from_key(session.key),
            last_activity=iso_from_ms(last_activity_ms(session.updated_at, messages)),
            messages=messages,
            can_send=bool(session.session_id),
            source="session",
        )

    def _run_column(self, run: SubagentRunRecord, now_ms: int) -> AgentColumn:
        key = run.child_session_key
        return AgentColumn(
            id=key,
            name=resolve_agent_name(key, run),
            session_short_id=short_id_from_key(key),
            session_key=key,
            status=derive_run_status(run, now_ms, recent_age_ms=self._settings.recent_age_ms),
            model=run.model,
            runtime="subagent",
            last_activity=iso_from_ms(run.ended_at or run.started_at or run.created_at),
            can_send=False,
            source="subagent-run",
        )

    async def build(self) -> AgentsSnapshot:
        limitations: list[str] = []
        sessions = await self._load_sessions(limitations)
        runs = self._load_runs(limitations)
        await self._run_watchdog(runs, limitations)

        now_ms = to_epoch_ms(self._clock())
        runs_by_key = latest_runs_by_session_key(runs)

        columns = [
            self._session_column(session, runs_by_key, now_ms)
            for session in self.select_sessions(sessions)
        ]
        seen = {column.session_key for column in columns}
        for key, run in runs_by_key.items():
            if key in seen:
                continue
            columns.append(self._run_column(run, now_ms))
            seen.add(key)

        if not columns:
            limitations.append(NO_AGENTS_FOUND)

        return AgentsSnapshot(
            agents=columns,
            last_updated=self._clock().isoformat(),
            limitations=limitations,
        )


__all__ = [
    "AgentColumn",
    "AgentsSnapshot",
    "NO_AGENTS_FOUND",
    "SESSIONS_UNAVAILABLE",
    "SnapshotBuilder",
    "is_dashboard_session",
    "last_activity_ms",
]
