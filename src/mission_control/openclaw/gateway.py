"""Send and requeue capabilities backed by the OpenClaw CLI."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from .runner import (
    OpenclawCommandError,
    OpenclawRunner,
    OpenclawRunnerError,
    OpenclawTimeoutError,
)
from .utils import parse_json_output, strip_ansi

logger = logging.getLogger(__name__)

ThinkingLevel = Literal["off", "minimal", "low", "medium", "high", "xhigh"]

MAX_MESSAGE_CHARS = 4000
MAX_REPLY_CHARS = 8000
QUEUED_PLACEHOLDER_REPLY = (
    "Mission Control accepted your action request and it is still processing in the background."
)


class SendError(RuntimeError):
    """Raised when a message cannot be delivered to a session."""


class GatewayResponseError(RuntimeError):
    """Raised when a gateway call returns output that is not JSON."""


@dataclass(slots=True)
class SendOptions:
    thinking: ThinkingLevel | None = None
    timeout_seconds: int = 180
    exec_timeout_ms: int = 200_000
    accept_timeout_as_queued: bool = False


class SendCapability(Protocol):
    """Deliver a message to an addressable session and return its reply."""

    async def send(self, session_id: str, message: str, options: SendOptions | None = None) -> str:
        ...


class SpawnCapability(Protocol):
    """Submit delegated work and return the gateway response."""

    async def spawn(self, payload: dict[str, Any]) -> Any:
        ...

    async def patch_session_model(self, session_key: str, model: str | None) -> None:
        ...


def _format_command_error(exc: OpenclawRunnerError) -> str:
    if not isinstance(exc, OpenclawCommandError):
        return str(exc)
    parts = [str(exc)]
    stderr = strip_ansi(exc.result.stderr).strip()
    stdout = strip_ansi(exc.result.stdout).strip()
    if stderr:
        parts.append(f"stderr: {stderr[:800]}")
    if stdout:
        parts.append(f"stdout: {stdout[:500]}")
    return " | ".join(parts)


class OpenclawGateway:
    """Implements the Send and Requeue capabilities on top of :class:`OpenclawRunner`."""

    def __init__(self, runner: OpenclawRunner, *, call_timeout_ms: int = 60_000) -> None:
        self._runner = runner
        self._call_timeout_ms = call_timeout_ms

    async def send(self, session_id: str, message: str, options: SendOptions | None = None) -> str:
        options = options or SendOptions()
        target = session_id.strip()
        text = message.replace("\x00", "").strip()
        if not target:
            raise SendError("Missing sessionId")
        if not text:
            raise SendError("Message cannot be empty")
        if len(text) > MAX_MESSAGE_CHARS:
            raise SendError(f"Message is too long (max {MAX_MESSAGE_CHARS} characters)")

        args = ["agent", "--session-id", target, "--message", text, "--timeout", str(options.timeout_seconds)]
        if options.thinking:
            args.extend(["--thinking", options.thinking])

        try:
            result = await self._runner.run(*args, timeout_ms=options.exec_timeout_ms)
        except OpenclawTimeoutError as exc:
            if options.accept_timeout_as_queued:
                logger.info("Send timed out; treating as queued", extra={"session_id": target})
                return QUEUED_PLACEHOLDER_REPLY
            raise SendError(str(exc)) from exc
        except OpenclawRunnerError as exc:
            raise SendError(_format_command_error(exc)) from exc

        return strip_ansi(result.stdout).strip()[:MAX_REPLY_CHARS]

    async def call(self, method: str, params: dict[str, Any], *, timeout_ms: int | None = None) -> Any:
        timeout_ms = timeout_ms or self._call_timeout_ms
        result = await self._runner.run(
            "gateway",
            "call",
            method,
            "--params",
            json.dumps(params),
            "--json",
            "--timeout",
            str(timeout_ms),
            timeout_ms=max(timeout_ms + 5_000, self._call_timeout_ms),
        )
        try:
            return parse_json_output(result.stdout)
        except ValueError as exc:
            raise GatewayResponseError(f"gateway call {method}: {exc}") from exc

    async def spawn(self, payload: dict[str, Any]) -> Any:
        return await self.call("agent", payload)

    async def patch_session_model(self, session_key: str, model: str | None) -> None:
        if not model or not model.strip():
            return
        try:
            await self.call("sessions.patch", {"key": session_key, "model": model.strip()})
        except (OpenclawRunnerError, GatewayResponseError) as exc:
            logger.warning(
                "Could not patch session model; continuing with default",
                extra={"session_key": session_key, "error": str(exc)},
            )


__all__ = [
    "GatewayResponseError",
    "OpenclawGateway",
    "QUEUED_PLACEHOLDER_REPLY",
    "SendCapability",
    "SendError",
    "SendOptions",
    "SpawnCapability",
    "ThinkingLevel",
]
