"""Persisted state for Mission Control."""

from .chroma import EventJournal, JournalEvent, JournalUnavailableError, record_event_quietly
from .state import (
    JsonStateStore,
    MirrorState,
    MirrorStateEntry,
    WatchdogRunState,
    WatchdogState,
    mirror_state_store,
    watchdog_state_store,
)

__all__ = [
    "EventJournal",
    "JournalEvent",
    "JournalUnavailableError",
    "JsonStateStore",
    "MirrorState",
    "MirrorStateEntry",
    "WatchdogRunState",
    "WatchdogState",
    "mirror_state_store",
    "record_event_quietly",
    "watchdog_state_store",
]
