"""Mirror subagent replies into the main session with cooldown and fingerprint dedupe."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field

from .config import MissionControlSettings
from .messaging import MessengerProtocol
from .openclaw import GatewayResponseError, OpenclawRunnerError, SendError, SendOptions
from .records import RecordLoadError, SessionRecord
from .status import find_session_by_id, is_subagent_key, short_id_from_key
from .storage import (
    EventJournal,
    JsonStateStore,
    MirrorState,
    MirrorStateEntry,
    mirror_state_store,
    record_event_quietly,
)
from .timeutil import Clock, to_epoch_ms, utc_now

logger = logging.getLogger(__name__)

MIRROR_SOURCE_LABEL = "Mission Control mirror"
SENT_PREVIEW_CHARS = 180
REPLY_PREVIEW_CHARS = 260
FINGERPRINT_SENT_CHARS = 220
FINGERPRINT_REPLY_CHARS = 260

MIRROR_SEND_OPTIONS = SendOptions(
    thinking="minimal",
    timeout_seconds=45,
    exec_timeout_ms=60_000,
    accept_timeout_as_queued=True,
)

DELIVERY_ERRORS = (SendError, OpenclawRunnerError, GatewayResponseError, RecordLoadError)


def normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def truncate_text(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 1].rstrip() + "…"


def build_mirror_summary(session_label: str, action_label: str, sent_message: str, reply: str) -> str:
    outgoing = truncate_text(normalize_whitespace(sent_message), SENT_PREVIEW_CHARS)
    incoming = truncate_text(normalize_whitespace(reply), REPLY_PREVIEW_CHARS)
    return "\n".join(
        [
            f"{MIRROR_SOURCE_LABEL}: {session_label} replied ({action_label}).",
            f"Reply summary: {incoming or '[empty reply]'}",
            f"Sent message: {outgoing or '[empty message]'}",
        ]
    )


def mirror_fingerprint(action_label: str, sent_message: str, reply: str) -> str:
    return normalize_whitespace(
        f"{action_label}|{sent_message[:FINGERPRINT_SENT_CHARS]}|{reply[:FINGERPRINT_REPLY_CHARS]}"
    )


@dataclass(slots=True)
class MirrorResult:
    attempted: bool
    mirrored: bool
    skipped_reason: str | None = None
    summary_message: str | None = None
    main_session_id: str | None = None
    main_reply: str | None = None


@dataclass(slots=True)
class SendWithMirrorResult:
    reply: str
    mirror: MirrorResult = field(default_factory=lambda: MirrorResult(attempted=False, mirrored=False))


class ReplyMirror:
    """Forward condensed subagent replies to the main session.

    Two gates apply per session id: a cooldown on any forward, and a
    fingerprint dedupe window on identical content. State is persisted only
    after a forward succeeds.
    """

    def __init__(
        self,
        settings: MissionControlSettings,
        messenger: MessengerProtocol,
        *,
        store: JsonStateStore[MirrorState] | None = None,
        journal: EventJournal | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self._messenger = messenger
        self._store = store or mirror_state_store(settings.mirror_state_file)
        self._journal = journal
        self._clock = clock or utc_now

    @property
    def store(self) -> JsonStateStore[MirrorState]:
        return self._store

    async def mirror_if_applicable(
        self,
        target_session: SessionRecord | None,
        session_id: str,
        action_label: str,
        sent_message: str,
        reply: str,
    ) -> MirrorResult:
        if target_session is None or not is_subagent_key(target_session.key):
            return MirrorResult(
                attempted=False, mirrored=False, skipped_reason="target-session-is-not-a-subagent"
            )

        summary = build_mirror_summary(
            short_id_from_key(target_session.key), action_label, sent_message, reply
        )
        fingerprint = mirror_fingerprint(action_label, sent_message, reply)
        state_key = session_id.strip()
        state = self._store.load()
        entry = state.by_session.get(state_key) or MirrorStateEntry()
        now_ms = to_epoch_ms(self._clock())

        cooldown_ms = self._settings.mirror_cooldown_ms
        if entry.last_mirrored_at and now_ms - entry.last_mirrored_at < cooldown_ms:
            remaining = math.ceil((cooldown_ms - (now_ms - entry.last_mirrored_at)) / 1000)
            return MirrorResult(attempted=False, mirrored=False, skipped_reason=f"cooldown-{remaining}s")

        if (
            entry.last_fingerprint
            and entry.last_fingerprint == fingerprint
            and entry.last_fingerprint_at
            and now_ms - entry.last_fingerprint_at < self._settings.mirror_dedupe_window_ms
        ):
            return MirrorResult(
                attempted=False, mirrored=False, skipped_reason="duplicate-within-dedupe-window"
            )

        try:
            main_result = await self._messenger.send_to_main(summary, MIRROR_SEND_OPTIONS)
        except DELIVERY_ERRORS as exc:
            logger.warning("Mirror delivery failed", extra={"session_id": state_key, "error": str(exc)})
            return MirrorResult(
                attempted=True,
                mirrored=False,
                skipped_reason=str(exc) or "unknown mirror failure",
                summary_message=summary,
            )

        state.by_session[state_key] = MirrorStateEntry(
            last_mirrored_at=now_ms,
            last_fingerprint=fingerprint,
            last_fingerprint_at=now_ms,
        )
        self._store.save(state)

        record_event_quietly(
            self._journal,
            session_id=f"mirror::{state_key}",
            event_type="mirror_forward",
            body={"summary": summary, "action_label": action_label},
            metadata={
                "session_key": target_session.key,
                "main_session_id": main_result.session_id,
                "action_label": action_label,
            },
        )

        return MirrorResult(
            attempted=True,
            mirrored=True,
            summary_message=summary,
            main_session_id=main_result.session_id,
            main_reply=main_result.reply,
        )

    async def send_with_mirror(
        self,
        session_id: str,
        message: str,
        *,
        action_label: str = "message",
        options: SendOptions | None = None,
    ) -> SendWithMirrorResult:
        """Send to a session, then mirror the reply if the session is a subagent.

        Send failures propagate; mirror failures are reported in the result.
        """

        target_id = session_id.strip()
        reply = await self._messenger.send(target_id, message, options)

        try:
            sessions = await self._messenger.load_sessions()
        except DELIVERY_ERRORS as exc:
            return SendWithMirrorResult(
                reply=reply,
                mirror=MirrorResult(
                    attempted=False,
                    mirrored=False,
                    skipped_reason=str(exc) or "failed-to-load-sessions-for-mirror",
                ),
            )

        mirror = await self.mirror_if_applicable(
            find_session_by_id(sessions, target_id), target_id, action_label, message, reply
        )
        return SendWithMirrorResult(reply=reply, mirror=mirror)


__all__ = [
    "MIRROR_SEND_OPTIONS",
    "MirrorResult",
    "ReplyMirror",
    "SendWithMirrorResult",
    "build_mirror_summary",
    "mirror_fingerprint",
    "normalize_whitespace",
    "truncate_text",
]
