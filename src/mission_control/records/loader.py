"""Loaders for the session registry and the subagent run ledger."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from ..config import MissionControlSettings
from ..openclaw import OpenclawRunner, OpenclawRunnerError
from ..openclaw.utils import parse_json_output
from ..timeutil import Clock, to_epoch_ms, utc_now
from .models import SessionRecord, SubagentRunRecord

logger = logging.getLogger(__name__)

_CLI_TIMEOUT_MS = 15_000


class RecordLoadError(RuntimeError):
    """Raised when a session or run source exists but cannot be read."""


def _read_json(path: Path) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RecordLoadError(f"Could not read {path}: {exc}") from exc
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RecordLoadError(f"Invalid JSON in {path}: {exc}") from exc


def _validate_sessions(entries: Iterable[Any]) -> list[SessionRecord]:
    records: list[SessionRecord] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            record = SessionRecord.model_validate(entry)
        except ValidationError as exc:
            logger.debug("Skipping malformed session entry", extra={"error": str(exc)})
            continue
        if record.key:
            records.append(record)
    return records


def parse_sessions_index(document: Any) -> list[SessionRecord]:
    """Accept the three index shapes: ``{"sessions": [...]}``, ``{"items": [...]}``, or a dict keyed by session key."""

    if isinstance(document, list):
        return _validate_sessions(document)
    if not isinstance(document, dict):
        return []
    for container in ("sessions", "items"):
        if isinstance(document.get(container), list):
            return _validate_sessions(document[container])

    entries = []
    for key, value in document.items():
        if isinstance(value, dict):
            entries.append({**value, "key": key})
    return _validate_sessions(entries)


class SessionRegistry:
    """Reads the OpenClaw session registry, preferring the CLI over the on-disk index."""

    def __init__(
        self,
        settings: MissionControlSettings,
        runner: OpenclawRunner | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._clock = clock or utc_now

    def _with_age(self, records: list[SessionRecord], now_ms: int) -> list[SessionRecord]:
        for record in records:
            if record.age_ms is None and record.updated_at is not None:
                record.age_ms = now_ms - record.updated_at
        return records

    async def load(self) -> list[SessionRecord]:
        """Load sessions from the CLI, falling back to the index file on any CLI failure."""

        if self._runner is not None:
            try:
                return await self.load_from_cli()
            except (OpenclawRunnerError, ValueError) as exc:
                logger.warning(
                    "Failed to load sessions from openclaw CLI; falling back to sessions index",
                    extra={"error": str(exc)},
                )
        return self.load_from_index()

    async def load_from_cli(self) -> list[SessionRecord]:
        if self._runner is None:
            raise RecordLoadError("OpenClaw runner is unavailable")
        result = await self._runner.run(
            "sessions",
            "--active",
            str(self._settings.active_window_minutes),
            "--json",
            timeout_ms=_CLI_TIMEOUT_MS,
        )
        document = parse_json_output(result.stdout)
        if isinstance(document, dict) and isinstance(document.get("sessions"), list):
            entries = document["sessions"]
        elif isinstance(document, list):
            entries = document
        else:
            raise ValueError("Unable to parse sessions from openclaw output")
        return self._with_age(_validate_sessions(entries), to_epoch_ms(self._clock()))

    def load_from_index(self) -> list[SessionRecord]:
        index_file = self._settings.sessions_index_file
        if index_file is None or not index_file.exists():
            return []

        now_ms = to_epoch_ms(self._clock())
        window_ms = self._settings.active_window_minutes * 60 * 1000
        records = self._with_age(parse_sessions_index(_read_json(index_file)), now_ms)
        records = [
            record
            for record in records
            if record.key.startswith("agent:") and (record.age_ms is None or record.age_ms <= window_ms)
        ]
        records.sort(key=lambda record: record.updated_at or 0, reverse=True)
        return records


class RunLedger:
    """Reads ``runs.json`` written by the subagent orchestrator."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[SubagentRunRecord]:
        if not self._path.exists():
            return []

        document = _read_json(self._path)
        if document is None:
            return []
        if not isinstance(document, dict):
            raise RecordLoadError(f"Unexpected run ledger layout in {self._path}")

        runs = document.get("runs") or {}
        if not isinstance(runs, dict):
            raise RecordLoadError(f"Unexpected 'runs' layout in {self._path}")

        records: list[SubagentRunRecord] = []
        for run_id, entry in runs.items():
            if not isinstance(entry, dict):
                continue
            try:
                record = SubagentRunRecord.model_validate(entry)
            except ValidationError as exc:
                logger.debug("Skipping malformed run entry", extra={"run_id": run_id, "error": str(exc)})
                continue
            if not (record.run_id and record.run_id.strip()):
                record.run_id = run_id
            records.append(record)
        return records


__all__ = ["RecordLoadError", "RunLedger", "SessionRegistry", "parse_sessions_index"]
