from __future__ import annotations

from types import SimpleNamespace
import json

import pytest

import mission_control.server as server_module
from mission_control.openclaw import OpenclawNotFoundError
from mission_control.openclaw.runner import FakeOpenclawRunner
from mission_control.server import create_server
from mission_control.storage import JournalUnavailableError, WatchdogRunState, WatchdogState


class StubFastMCP:
    def __init__(self, *args, **kwargs):
        self.name = kwargs.get("name")
        self.version = kwargs.get("version")
        self.tools: dict[str, object] = {}

    def resource(self, *args, **kwargs):
        def decorator(fn):
            name = kwargs.get("name") or (args[0] if args else fn.__name__)
            setattr(self, name, fn)
            return fn

        return decorator

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[kwargs["name"]] = fn
            return fn

        return decorator

    def run(self):  # pragma: no cover - not used in tests
        return None


class StubEventJournal:
    def __init__(self, *_, **__):
        self.events: list[dict[str, object]] = []

    def ping(self) -> bool:
        return True

    def record_event(self, *, session_id, event_type, body, metadata=None):
        self.events.append({"session_id": session_id, "event_type": event_type})


class UnavailableJournal(StubEventJournal):
    def ping(self) -> bool:
        raise JournalUnavailableError("chromadb package is not installed; the event journal is disabled")


@pytest.fixture(autouse=True)
def stub_fastmcp(monkeypatch):
    monkeypatch.setattr(server_module, "FastMCP", StubFastMCP)


def _status(server) -> dict:
    return json.loads(server.mission_control_status(SimpleNamespace(request_id="req-1")))


def test_create_server_registers_tools_and_status(settings, monkeypatch) -> None:
    monkeypatch.setattr(server_module, "EventJournal", StubEventJournal)

    server = create_server(settings, runner=FakeOpenclawRunner())

    assert set(server.tools) == {"agents_snapshot", "send_message", "run_watchdog", "agent_control"}
    assert server.gateway is not None
    assert isinstance(server.journal, StubEventJournal)

    status = _status(server)
    assert status["request_id"] == "req-1"
    assert status["openclaw"]["available"] is True
    assert status["storage"]["journal"]["available"] is True
    assert status["templates"]["ids"] == ["bug-triage", "build-feature", "research-brief"]
    assert status["watchdog"]["tracked_runs"] == 0
    assert status["watchdog"]["threshold_ms"] == settings.stalled_threshold_ms
    assert status["mirror"]["tracked_sessions"] == 0


def test_status_counts_persisted_watchdog_runs(settings, monkeypatch) -> None:
    monkeypatch.setattr(server_module, "EventJournal", StubEventJournal)
    server = create_server(settings, runner=FakeOpenclawRunner())

    server.watchdog.store.save(
        WatchdogState(
            last_scan_at=1,
            runs={
                "run-1": WatchdogRunState(attempts=1, last_attempt_at=1, last_run_status="accepted"),
                "run-2": WatchdogRunState(attempts=1, last_attempt_at=1, last_run_status="requeue-failed"),
            },
        )
    )

    status = _status(server)
    assert status["watchdog"]["tracked_runs"] == 2
    assert status["watchdog"]["by_status"] == {"accepted": 1, "requeue-failed": 1}


def test_journal_unavailable_is_reported(settings, monkeypatch) -> None:
    monkeypatch.setattr(server_module, "EventJournal", UnavailableJournal)

    server = create_server(settings, runner=FakeOpenclawRunner())

    assert server.journal is None
    assert server.journal_metadata["available"] is False
    assert "chromadb" in server.journal_metadata["error"]


def test_missing_openclaw_cli_leaves_server_usable(settings, monkeypatch) -> None:
    def _missing(*_args, **_kwargs):
        raise OpenclawNotFoundError("openclaw executable not found on PATH")

    monkeypatch.setattr(server_module, "EventJournal", StubEventJournal)
    monkeypatch.setattr(server_module, "OpenclawRunner", _missing)

    server = create_server(settings)

    assert server.openclaw_runner is None
    assert server.gateway is None
    status = _status(server)
    assert status["openclaw"]["available"] is False
    assert "not found" in status["openclaw"]["error"]
