"""Address sessions by id, including the designated main coordinating session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from .openclaw import SendCapability, SendError, SendOptions
from .records import SessionRecord, SessionRegistry
from .status import resolve_main_session

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MainSendResult:
    session_id: str
    reply: str


class MessengerProtocol(Protocol):
    async def send(self, session_id: str, message: str, options: SendOptions | None = None) -> str:
        ...

    async def send_to_main(self, message: str, options: SendOptions | None = None) -> MainSendResult:
        ...

    async def load_sessions(self) -> list[SessionRecord]:
        ...


class Messenger:
    """Routes messages through the send capability using the live session registry."""

    def __init__(self, sender: SendCapability | None, registry: SessionRegistry) -> None:
        self._sender = sender
        self._registry = registry

    async def load_sessions(self) -> list[SessionRecord]:
        return await self._registry.load()

    def _require_sender(self) -> SendCapability:
        if self._sender is None:
            raise SendError("OpenClaw CLI is unavailable; cannot deliver messages")
        return self._sender

    async def send(self, session_id: str, message: str, options: SendOptions | None = None) -> str:
        return await self._require_sender().send(session_id, message, options)

    async def send_to_main(self, message: str, options: SendOptions | None = None) -> MainSendResult:
        sessions = await self.load_sessions()
        main_session = resolve_main_session(sessions)
        if main_session is None or not main_session.session_id:
            raise SendError(
                "Could not locate an active Main Agent session for Mission Control messaging."
            )
        reply = await self._require_sender().send(main_session.session_id, message, options)
        logger.debug("Posted to main session", extra={"session_id": main_session.session_id})
        return MainSendResult(session_id=main_session.session_id, reply=reply)


__all__ = ["MainSendResult", "Messenger", "MessengerProtocol"]
