from __future__ import annotations

import asyncio
import json

import pytest

from mission_control.openclaw import (
    GatewayResponseError,
    OpenclawGateway,
    QUEUED_PLACEHOLDER_REPLY,
    SendError,
    SendOptions,
)
from mission_control.openclaw.runner import (
    FakeOpenclawRunner,
    OpenclawExecutionResult,
    OpenclawTimeoutError,
)


def _ok(stdout: str) -> OpenclawExecutionResult:
    return OpenclawExecutionResult(args=("openclaw",), returncode=0, stdout=stdout, stderr="")


def test_send_builds_agent_command_and_strips_reply() -> None:
    runner = FakeOpenclawRunner([_ok("\x1b[1mDone.\x1b[0m\n")])
    gateway = OpenclawGateway(runner)

    reply = asyncio.run(
        gateway.send(" sess-1 ", "hello\x00 there", SendOptions(thinking="minimal", timeout_seconds=45))
    )

    assert reply == "Done."
    assert runner.invocations == [
        (
            "agent",
            "--session-id",
            "sess-1",
            "--message",
            "hello there",
            "--timeout",
            "45",
            "--thinking",
            "minimal",
        )
    ]


def test_send_caps_reply_length() -> None:
    runner = FakeOpenclawRunner([_ok("x" * 9000)])

    reply = asyncio.run(OpenclawGateway(runner).send("sess-1", "hi"))

    assert len(reply) == 8000


@pytest.mark.parametrize(
    ("session_id", "message", "expected"),
    [
        ("", "hi", "Missing sessionId"),
        ("sess-1", "   ", "Message cannot be empty"),
        ("sess-1", "x" * 4001, "too long"),
    ],
)
def test_send_validates_input(session_id: str, message: str, expected: str) -> None:
    runner = FakeOpenclawRunner()

    with pytest.raises(SendError, match=expected):
        asyncio.run(OpenclawGateway(runner).send(session_id, message))
    assert runner.invocations == []


def test_send_timeout_can_be_accepted_as_queued() -> None:
    runner = FakeOpenclawRunner([OpenclawTimeoutError("slow")])
    options = SendOptions(accept_timeout_as_queued=True)

    reply = asyncio.run(OpenclawGateway(runner).send("sess-1", "hi", options))

    assert reply == QUEUED_PLACEHOLDER_REPLY


def test_send_timeout_raises_without_queue_acceptance() -> None:
    runner = FakeOpenclawRunner([OpenclawTimeoutError("slow")])

    with pytest.raises(SendError, match="slow"):
        asyncio.run(OpenclawGateway(runner).send("sess-1", "hi"))


def test_send_command_failure_includes_stderr() -> None:
    failed = OpenclawExecutionResult(
        args=("openclaw",), returncode=2, stdout="", stderr="session not found"
    )
    runner = FakeOpenclawRunner([failed])

    with pytest.raises(SendError, match="stderr: session not found"):
        asyncio.run(OpenclawGateway(runner).send("sess-1", "hi"))


def test_spawn_calls_gateway_agent_method() -> None:
    runner = FakeOpenclawRunner([_ok('{"runId": "run-9", "status": "accepted"}')])
    gateway = OpenclawGateway(runner, call_timeout_ms=30_000)

    response = asyncio.run(gateway.spawn({"sessionKey": "agent:main:subagent:x", "message": "go"}))

    assert response == {"runId": "run-9", "status": "accepted"}
    args = runner.invocations[0]
    assert args[:3] == ("gateway", "call", "agent")
    assert json.loads(args[args.index("--params") + 1])["message"] == "go"
    assert args[args.index("--timeout") + 1] == "30000"


def test_call_raises_on_unparseable_output() -> None:
    runner = FakeOpenclawRunner([_ok("gateway offline")])

    with pytest.raises(GatewayResponseError):
        asyncio.run(OpenclawGateway(runner).call("agent", {}))


def test_patch_session_model_skips_empty_model() -> None:
    runner = FakeOpenclawRunner()

    asyncio.run(OpenclawGateway(runner).patch_session_model("agent:main:subagent:x", None))

    assert runner.invocations == []


def test_patch_session_model_swallows_failures(caplog) -> None:
    failed = OpenclawExecutionResult(args=("openclaw",), returncode=1, stdout="", stderr="nope")
    runner = FakeOpenclawRunner([failed])

    with caplog.at_level("WARNING"):
        asyncio.run(
            OpenclawGateway(runner).patch_session_model("agent:main:subagent:x", "openai/gpt-5")
        )

    assert runner.invocations[0][:3] == ("gateway", "call", "sessions.patch")
    assert "Could not patch session model" in caplog.text
