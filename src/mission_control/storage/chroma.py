"""Chroma-backed journal of watchdog, mirror, and control events."""

from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..timeutil import utc_now

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "mission_control_events"


class JournalUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class JournalCollection(Protocol):
    """The slice of the Chroma collection API the journal relies on."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class JournalClient(Protocol):
    def get_or_create_collection(self, name: str) -> JournalCollection:
        ...


@dataclass(slots=True)
class JournalEvent:
    id: str
    session_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _scalar_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata values must be non-null scalars.
    return {
        key: value if isinstance(value, (str, int, float, bool)) else json.dumps(value)
        for key, value in metadata.items()
        if value is not None
    }


class EventJournal:
    """Append-only event log; every event carries a per-session sequence number."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = DEFAULT_COLLECTION,
        client_factory: Callable[[], JournalClient] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._persistent_client
        self._clock = clock or utc_now
        self._collection: JournalCollection | None = None
        self._sequence: dict[str, int] = defaultdict(int)

    def _persistent_client(self) -> JournalClient:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise JournalUnavailableError(
                "chromadb package is not installed; the event journal is disabled"
            ) from exc
        return chromadb.PersistentClient(path=str(self._path))

    @property
    def collection(self) -> JournalCollection:
        if self._collection is None:
            self._collection = self._client_factory().get_or_create_collection(
                self._collection_name
            )
        return self._collection

    def ping(self) -> bool:
        return self.collection is not None

    def _to_event(self, event_id: str, document: str, metadata: dict[str, Any]) -> JournalEvent:
        raw_timestamp = metadata.get("timestamp")
        return JournalEvent(
            id=event_id,
            session_id=metadata.get("session_id", ""),
            event_type=metadata.get("event_type", ""),
            document=document,
            metadata=metadata,
            timestamp=(
                datetime.fromisoformat(raw_timestamp)
                if isinstance(raw_timestamp, str)
                else self._clock()
            ),
        )

    def _query(self, where: dict[str, Any] | None, limit: int | None = None) -> list[JournalEvent]:
        result = self.collection.get(where=where, limit=limit)
        events = [
            self._to_event(event_id, document, metadata)
            for event_id, document, metadata in zip(
                result.get("ids", []), result.get("documents", []), result.get("metadatas", [])
            )
        ]
        return sorted(events, key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))

    def record_event(
        self,
        *,
        session_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEvent:
        self._sequence[session_id] += 1
        event_id = f"{session_id}:{uuid.uuid4().hex}"
        document = body if isinstance(body, str) else json.dumps(body)
        stored = _scalar_metadata(
            {
                "session_id": session_id,
                "event_type": event_type,
                "timestamp": self._clock().isoformat(),
                "sequence": self._sequence[session_id],
                **(metadata or {}),
            }
        )
        self.collection.add(documents=[document], metadatas=[stored], ids=[event_id])
        return self._to_event(event_id, document, stored)

    def fetch_session_events(self, session_id: str, *, limit: int | None = None) -> list[JournalEvent]:
        return self._query({"session_id": session_id}, limit)

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[JournalEvent]:
        """Filter by metadata, then by a case-insensitive keyword; ``limit`` keeps the newest."""

        events = self._query(filters or None)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[-limit:] if limit else events


def record_event_quietly(
    journal: EventJournal | None,
    *,
    session_id: str,
    event_type: str,
    body: Any,
    metadata: dict[str, Any] | None = None,
) -> JournalEvent | None:
    """Journal an event after its side effect already happened; failures are logged, never raised."""

    if journal is None:
        return None
    try:
        return journal.record_event(
            session_id=session_id, event_type=event_type, body=body, metadata=metadata
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Could not write journal event",
            extra={"session_id": session_id, "event_type": event_type, "error": str(exc)},
        )
        return None


__all__ = [
    "DEFAULT_COLLECTION",
    "EventJournal",
    "JournalEvent",
    "JournalUnavailableError",
    "record_event_quietly",
]
