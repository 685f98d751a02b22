from __future__ import annotations

import pytest

from mission_control.records import SessionRecord, SubagentRunRecord
from mission_control.status import (
    derive_run_status,
    derive_session_status,
    derive_status,
    find_latest_failed_run,
    is_running_run,
    latest_runs_by_session_key,
    resolve_agent_name,
    resolve_main_session,
    run_stable_id,
    run_stalled_for_ms,
    runtime_from_key,
    short_id_from_key,
)

NOW_MS = 1_800_000_000_000
MINUTE = 60_000
SUB_KEY = "agent:main:subagent:abcdef12-3456"


def _session(age_ms: float | None, key: str = SUB_KEY) -> SessionRecord:
    return SessionRecord(key=key, session_id="s-1", age_ms=age_ms)


def _run(**fields) -> SubagentRunRecord:
    return SubagentRunRecord.model_validate({"childSessionKey": SUB_KEY, **fields})


@pytest.mark.parametrize(
    ("age_ms", "expected"),
    [
        (None, "unknown"),
        (20 * MINUTE, "recent"),
        (20 * MINUTE + 1, "idle"),
        (120 * MINUTE, "idle"),
        (120 * MINUTE + 1, "completed"),
    ],
)
def test_session_status_from_age(age_ms, expected) -> None:
    assert derive_session_status(_session(age_ms)) == expected


def test_session_without_run_uses_session_status() -> None:
    assert derive_status(_session(5 * MINUTE), {}, NOW_MS) == "recent"


@pytest.mark.parametrize(
    ("fields", "expected"),
    [
        ({"endedAt": NOW_MS, "status": "error"}, "failed"),
        ({"endedAt": NOW_MS, "status": "running"}, "completed"),
        ({"status": "running", "outcome": {"status": "timeout"}}, "failed"),
        ({"state": "succeeded"}, "completed"),
        ({"phase": "pending", "status": "running"}, "queued"),
        ({"status": "running", "startedAt": NOW_MS - MINUTE}, "active"),
        ({"status": "running", "startedAt": NOW_MS - 30 * MINUTE}, "idle"),
        ({"startedAt": NOW_MS - MINUTE}, "recent"),
        ({"startedAt": NOW_MS - 30 * MINUTE}, "idle"),
        ({"createdAt": NOW_MS - MINUTE}, "queued"),
        ({}, "unknown"),
    ],
)
def test_run_status_precedence(fields, expected) -> None:
    assert derive_run_status(_run(**fields), NOW_MS) == expected


def test_active_run_on_quiet_session_defers_to_session() -> None:
    runs = {SUB_KEY: _run(status="running", startedAt=NOW_MS - MINUTE)}

    assert derive_status(_session(60 * MINUTE), runs, NOW_MS) == "idle"
    assert derive_status(_session(MINUTE), runs, NOW_MS) == "active"


def test_recent_or_unknown_run_defers_to_session() -> None:
    recent_run = {SUB_KEY: _run(startedAt=NOW_MS - MINUTE)}
    unknown_run = {SUB_KEY: _run()}

    assert derive_status(_session(200 * MINUTE), recent_run, NOW_MS) == "completed"
    assert derive_status(_session(None), unknown_run, NOW_MS) == "unknown"


def test_terminal_run_status_wins_over_session() -> None:
    runs = {SUB_KEY: _run(status="failed")}

    assert derive_status(_session(MINUTE), runs, NOW_MS) == "failed"


def test_is_running_run() -> None:
    assert is_running_run(_run(status="running"))
    assert is_running_run(_run(startedAt=NOW_MS))
    assert not is_running_run(_run(status="running", endedAt=NOW_MS))
    assert not is_running_run(_run(status="running", phase="queued"))
    assert not is_running_run(_run())


def test_run_stable_id_and_stall_duration() -> None:
    run = _run(startedAt=NOW_MS - 25 * MINUTE, createdAt=NOW_MS - 30 * MINUTE)

    assert run_stable_id(_run(runId=" r-1 ")) == "r-1"
    assert run_stable_id(run) == f"{SUB_KEY}:{NOW_MS - 25 * MINUTE}"
    assert run_stalled_for_ms(run, NOW_MS) == 25 * MINUTE
    assert run_stalled_for_ms(_run(), NOW_MS) == 0


def test_latest_runs_by_session_key_prefers_newest() -> None:
    older = _run(runId="old", startedAt=NOW_MS - 10 * MINUTE)
    newer = _run(runId="new", endedAt=NOW_MS - MINUTE)

    assert latest_runs_by_session_key([newer, older])[SUB_KEY].run_id == "new"
    assert latest_runs_by_session_key([older, newer])[SUB_KEY].run_id == "new"


def test_find_latest_failed_run() -> None:
    runs = [
        _run(runId="f1", status="failed", endedAt=NOW_MS - 10 * MINUTE),
        _run(runId="f2", status="error", endedAt=NOW_MS - MINUTE),
        _run(runId="ok", status="done", endedAt=NOW_MS),
    ]

    assert find_latest_failed_run(runs, SUB_KEY, NOW_MS).run_id == "f2"
    assert find_latest_failed_run(runs, "agent:main:subagent:other", NOW_MS) is None


def test_resolve_main_session_skips_cron_and_sessionless() -> None:
    sessions = [
        SessionRecord(key="agent:main:cron:daily:main", session_id="cron", updated_at=30),
        SessionRecord(key="agent:main:main", session_id=None, updated_at=20),
        SessionRecord(key="agent:ops:main", session_id="ops", updated_at=10),
    ]

    assert resolve_main_session(sessions).session_id == "ops"


def test_key_helpers() -> None:
    assert short_id_from_key(SUB_KEY) == "abcdef12"
    assert short_id_from_key("agent:main:main") == "main"
    assert runtime_from_key(SUB_KEY) == "subagent"
    assert runtime_from_key("agent:main:cron:x") == "cron"
    assert runtime_from_key("agent:main:main") == "agent"


def test_resolve_agent_name() -> None:
    assert resolve_agent_name(SUB_KEY, _run(label="bug-triage_retry")) == "Bug Triage Retry"
    assert resolve_agent_name(SUB_KEY, _run(task="\n- **Fix** the `login` flow\nmore")) == "Fix the login flow"
    assert resolve_agent_name(SUB_KEY) == "Subagent abcdef12"
    assert resolve_agent_name("agent:main:main") == "Main Agent"
