"""OpenClaw CLI orchestration utilities."""

from .gateway import (
    GatewayResponseError,
    OpenclawGateway,
    QUEUED_PLACEHOLDER_REPLY,
    SendCapability,
    SendError,
    SendOptions,
    SpawnCapability,
)
from .runner import (
    OpenclawCommandError,
    OpenclawExecutionResult,
    OpenclawNotFoundError,
    OpenclawRunner,
    OpenclawRunnerError,
    OpenclawTimeoutError,
)

__all__ = [
    "GatewayResponseError",
    "OpenclawCommandError",
    "OpenclawExecutionResult",
    "OpenclawGateway",
    "OpenclawNotFoundError",
    "OpenclawRunner",
    "OpenclawRunnerError",
    "OpenclawTimeoutError",
    "QUEUED_PLACEHOLDER_REPLY",
    "SendCapability",
    "SendError",
    "SendOptions",
    "SpawnCapability",
]
