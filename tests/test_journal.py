from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from mission_control.storage import EventJournal, JournalUnavailableError


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = [record for record in self.records if not where or _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


def _journal(tmp_path: Path) -> EventJournal:
    return EventJournal(
        tmp_path,
        client_factory=lambda: StubClient(),
        clock=lambda: datetime.fromisoformat("2026-03-01T12:00:00+00:00"),
    )


def test_record_and_fetch_events(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    event = journal.record_event(
        session_id="watchdog::run-1",
        event_type="watchdog_retry",
        body={"summary": "retried"},
        metadata={"new_run_id": "run-2", "model": None},
    )

    assert event.session_id == "watchdog::run-1"
    assert event.metadata["sequence"] == 1
    assert "model" not in event.metadata

    events = journal.fetch_session_events("watchdog::run-1")
    assert len(events) == 1
    assert events[0].metadata["new_run_id"] == "run-2"
    assert events[0].document == '{"summary": "retried"}'
    assert events[0].timestamp.isoformat() == "2026-03-01T12:00:00+00:00"


def test_sequence_increments_per_session(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    journal.record_event(session_id="s-1", event_type="control_action", body="A")
    journal.record_event(session_id="s-1", event_type="control_action", body="B")
    journal.record_event(session_id="s-2", event_type="control_action", body="C")

    sequences = [event.metadata["sequence"] for event in journal.fetch_session_events("s-1")]
    assert sequences == [1, 2]
    assert journal.fetch_session_events("s-2")[0].metadata["sequence"] == 1


def test_non_scalar_metadata_is_serialized(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    event = journal.record_event(
        session_id="s", event_type="note", body="x", metadata={"payload": {"label": "a"}}
    )

    assert event.metadata["payload"] == '{"label": "a"}'


def test_search_filters_and_limit(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    journal.record_event(session_id="s", event_type="mirror_forward", body="Subagent finished auth fix")
    journal.record_event(session_id="s", event_type="control_action", body="Nudged auth worker")
    journal.record_event(session_id="t", event_type="control_action", body="Stop logging work")

    assert len(journal.search_events("auth")) == 2
    assert len(journal.search_events(filters={"event_type": "control_action"})) == 2
    combined = journal.search_events(
        filters={"$and": [{"event_type": "control_action"}, {"session_id": "t"}]}
    )
    assert [event.document for event in combined] == ["Stop logging work"]
    latest = journal.search_events(filters={"session_id": "s"}, limit=1)
    assert [event.document for event in latest] == ["Nudged auth worker"]


def test_client_factory_failure_surfaces(tmp_path: Path) -> None:
    def _fail():
        raise JournalUnavailableError("chromadb package is not installed")

    journal = EventJournal(tmp_path, client_factory=_fail)

    with pytest.raises(JournalUnavailableError):
        journal.ping()
