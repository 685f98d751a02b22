"""Whole-file JSON state documents for the reply mirror and the watchdog."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class _StateModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MirrorStateEntry(_StateModel):
    last_mirrored_at: int | None = Field(default=None, alias="lastMirroredAt")
    last_fingerprint: str | None = Field(default=None, alias="lastFingerprint")
    last_fingerprint_at: int | None = Field(default=None, alias="lastFingerprintAt")


class MirrorState(_StateModel):
    by_session: dict[str, MirrorStateEntry] = Field(default_factory=dict, alias="bySession")


class WatchdogRunState(_StateModel):
    attempts: int = 0
    last_attempt_at: int | None = Field(default=None, alias="lastAttemptAt")
    last_run_status: str | None = Field(default=None, alias="lastRunStatus")


class WatchdogState(_StateModel):
    last_scan_at: int | None = Field(default=None, alias="lastScanAt")
    runs: dict[str, WatchdogRunState] = Field(default_factory=dict)


StateT = TypeVar("StateT", bound=BaseModel)


class JsonStateStore(Generic[StateT]):
    """Read whole file, mutate in memory, write whole file.

    No locking: a single active writer per file is assumed.
    """

    def __init__(self, path: Path, model: type[StateT]) -> None:
        self._path = Path(path)
        self._model = model

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StateT:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._model()
        except OSError as exc:
            logger.warning("Could not read state file", extra={"path": str(self._path), "error": str(exc)})
            return self._model()

        if not raw.strip():
            return self._model()
        try:
            return self._model.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "Discarding unreadable state file", extra={"path": str(self._path), "error": str(exc)}
            )
            return self._model()

    def save(self, state: StateT) -> bool:
        payload = state.model_dump(by_alias=True, exclude_none=True)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to persist state file", extra={"path": str(self._path), "error": str(exc)})
            return False
        return True


def mirror_state_store(path: Path) -> JsonStateStore[MirrorState]:
    return JsonStateStore(path, MirrorState)


def watchdog_state_store(path: Path) -> JsonStateStore[WatchdogState]:
    return JsonStateStore(path, WatchdogState)


__all__ = [
    "JsonStateStore",
    "MirrorState",
    "MirrorStateEntry",
    "WatchdogRunState",
    "WatchdogState",
    "mirror_state_store",
    "watchdog_state_store",
]
