"""Fuse session recency with run-ledger status into one lifecycle status per agent."""

from __future__ import annotations

import re
from typing import Iterable, Literal, Mapping

from .records import SessionRecord, SubagentRunRecord

AgentStatus = Literal["active", "queued", "recent", "idle", "completed", "failed", "unknown"]

DEFAULT_RECENT_AGE_MS = 20 * 60 * 1000
DEFAULT_IDLE_AGE_MS = 2 * 60 * 60 * 1000
MAX_TASK_SUMMARY_LENGTH = 88

_SUBAGENT_MARKER = ":subagent:"


def derive_session_status(
    session: SessionRecord,
    *,
    recent_age_ms: int = DEFAULT_RECENT_AGE_MS,
    idle_age_ms: int = DEFAULT_IDLE_AGE_MS,
) -> AgentStatus:
    if session.age_ms is None:
        return "unknown"
    if session.age_ms <= recent_age_ms:
        return "recent"
    if session.age_ms <= idle_age_ms:
        return "idle"
    return "completed"


def run_recency_ms(run: SubagentRunRecord) -> float:
    return max(run.ended_at or 0, run.started_at or 0, run.created_at or 0)


def derive_run_status(
    run: SubagentRunRecord,
    now_ms: float,
    *,
    recent_age_ms: int = DEFAULT_RECENT_AGE_MS,
) -> AgentStatus:
    """Resolve a run's status from its ingested signal, following a fixed precedence."""

    if run.ended_at:
        return "failed" if run.signal == "failed" else "completed"
    if run.signal == "failed":
        return "failed"
    if run.signal == "completed":
        return "completed"
    if run.signal == "queued":
        return "queued"
    if run.signal == "running":
        return "active" if now_ms - run_recency_ms(run) <= recent_age_ms else "idle"
    if run.started_at:
        return "recent" if now_ms - run.started_at <= recent_age_ms else "idle"
    if run.created_at:
        return "queued"
    return "unknown"


def derive_status(
    session: SessionRecord,
    runs_by_child_key: Mapping[str, SubagentRunRecord],
    now_ms: float,
    *,
    recent_age_ms: int = DEFAULT_RECENT_AGE_MS,
    idle_age_ms: int = DEFAULT_IDLE_AGE_MS,
) -> AgentStatus:
    """Fuse the session's recency with the run ledger.

    Session recency wins whenever the run claims ``active`` for a session that
    has gone quiet, or when the run only reports ``recent``/``unknown``.
    """

    session_status = derive_session_status(
        session, recent_age_ms=recent_age_ms, idle_age_ms=idle_age_ms
    )
    run = runs_by_child_key.get(session.key)
    if run is None:
        return session_status

    run_status = derive_run_status(run, now_ms, recent_age_ms=recent_age_ms)
    if run_status == "active" and session_status != "recent":
        return session_status
    if run_status in ("recent", "unknown"):
        return session_status
    return run_status


def is_running_run(run: SubagentRunRecord) -> bool:
    if run.ended_at:
        return False
    if run.signal in ("failed", "completed", "queued"):
        return False
    if run.signal == "running":
        return True
    return bool(run.started_at)


def run_stable_id(run: SubagentRunRecord) -> str:
    if run.run_id and run.run_id.strip():
        return run.run_id.strip()
    started = run.started_at or run.created_at or 0
    return f"{run.child_session_key}:{int(started)}"


def run_stalled_for_ms(run: SubagentRunRecord, now_ms: float) -> float:
    last_heartbeat = max(run.started_at or 0, run.created_at or 0, 0)
    if not last_heartbeat:
        return 0
    return max(now_ms - last_heartbeat, 0)


def latest_runs_by_session_key(runs: Iterable[SubagentRunRecord]) -> dict[str, SubagentRunRecord]:
    """Newest run per child session key; later entries win recency ties."""

    by_key: dict[str, SubagentRunRecord] = {}
    for run in runs:
        if not run.child_session_key:
            continue
        current = by_key.get(run.child_session_key)
        if current is None or run_recency_ms(run) >= run_recency_ms(current):
            by_key[run.child_session_key] = run
    return by_key


def find_latest_failed_run(
    runs: Iterable[SubagentRunRecord], session_key: str, now_ms: float
) -> SubagentRunRecord | None:
    failed = [
        run
        for run in runs
        if run.child_session_key == session_key and derive_run_status(run, now_ms) == "failed"
    ]
    if not failed:
        return None
    return max(failed, key=run_recency_ms)


def is_subagent_key(key: str | None) -> bool:
    return bool(key) and _SUBAGENT_MARKER in key


def find_session_by_id(sessions: Iterable[SessionRecord], session_id: str) -> SessionRecord | None:
    return next((session for session in sessions if session.session_id == session_id), None)


def find_session_by_key(sessions: Iterable[SessionRecord], key: str) -> SessionRecord | None:
    return next((session for session in sessions if session.key == key), None)


def resolve_main_session(sessions: Iterable[SessionRecord]) -> SessionRecord | None:
    """Newest addressable ``:main`` session, ignoring cron and run sub-keys."""

    candidates = [
        session
        for session in sessions
        if session.key.endswith(":main") and ":cron:" not in session.key and ":run:" not in session.key
    ]
    candidates.sort(key=lambda session: session.updated_at or 0, reverse=True)
    return next((session for session in candidates if session.session_id), None)


def short_id_from_key(key: str) -> str:
    if _SUBAGENT_MARKER in key:
        return key.split(_SUBAGENT_MARKER, 1)[1][:8]
    if key.endswith(":main"):
        return "main"
    parts = [part for part in key.split(":") if part]
    return (parts[-1] if parts else key)[:8]


def runtime_from_key(key: str) -> str:
    if _SUBAGENT_MARKER in key:
        return "subagent"
    if ":cron:" in key:
        return "cron"
    return "agent"


def _fallback_name(key: str) -> str:
    if _SUBAGENT_MARKER in key:
        return f"Subagent {key.split(_SUBAGENT_MARKER, 1)[1][:8]}"
    if key.endswith(":main"):
        return "Main Agent"
    return key.split(":")[-1] or key


def _normalize_label(label: str | None) -> str | None:
    if not label or not label.strip():
        return None
    trimmed = label.strip()
    if "-" not in trimmed and "_" not in trimmed:
        return trimmed
    spaced = re.sub(r"\s+", " ", re.sub(r"[-_]+", " ", trimmed)).strip()
    if not spaced:
        return None
    return " ".join(part[:1].upper() + part[1:].lower() for part in spaced.split(" "))


def _summarize_task(task: str | None) -> str | None:
    if not task or not task.strip():
        return None
    first_line = next((line.strip() for line in task.splitlines() if line.strip()), None)
    if first_line is None:
        return None
    plain = re.sub(r"^[-*\d.)\s]+", "", first_line)
    plain = re.sub(r"[`*_~#]+", "", plain)
    plain = re.sub(r"\s+", " ", plain).strip()
    if not plain:
        return None
    if len(plain) <= MAX_TASK_SUMMARY_LENGTH:
        return plain
    return plain[: MAX_TASK_SUMMARY_LENGTH - 1].rstrip() + "…"


def resolve_agent_name(session_key: str, run: SubagentRunRecord | None = None) -> str:
    if run is not None:
        label = _normalize_label(run.label)
        if label:
            return label
        summary = _summarize_task(run.task)
        if summary:
            return summary
    return _fallback_name(session_key)


__all__ = [
    "AgentStatus",
    "derive_run_status",
    "derive_session_status",
    "derive_status",
    "find_latest_failed_run",
    "find_session_by_id",
    "find_session_by_key",
    "is_running_run",
    "is_subagent_key",
    "latest_runs_by_session_key",
    "resolve_agent_name",
    "resolve_main_session",
    "run_recency_ms",
    "run_stable_id",
    "run_stalled_for_ms",
    "runtime_from_key",
    "short_id_from_key",
]
