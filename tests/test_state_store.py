from __future__ import annotations

import json
from pathlib import Path

from mission_control.storage import (
    MirrorState,
    MirrorStateEntry,
    WatchdogRunState,
    WatchdogState,
    mirror_state_store,
    watchdog_state_store,
)


def test_missing_state_file_yields_default(tmp_path: Path) -> None:
    store = watchdog_state_store(tmp_path / "watchdog-state.json")

    state = store.load()

    assert state.last_scan_at is None
    assert state.runs == {}


def test_invalid_state_file_yields_default(tmp_path: Path, caplog) -> None:
    path = tmp_path / "mirror-state.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    with caplog.at_level("WARNING"):
        state = mirror_state_store(path).load()

    assert state == MirrorState()
    assert "Discarding unreadable state file" in caplog.text


def test_watchdog_state_persists_camel_case(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "watchdog-state.json"
    store = watchdog_state_store(path)
    state = WatchdogState(
        last_scan_at=1000,
        runs={"run-1": WatchdogRunState(attempts=1, last_attempt_at=900, last_run_status="requeued")},
    )

    assert store.save(state)

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document == {
        "lastScanAt": 1000,
        "runs": {"run-1": {"attempts": 1, "lastAttemptAt": 900, "lastRunStatus": "requeued"}},
    }
    assert store.load() == state


def test_mirror_state_reads_existing_document(tmp_path: Path) -> None:
    path = tmp_path / "mirror-state.json"
    path.write_text(
        json.dumps(
            {
                "bySession": {
                    "s-1": {"lastMirroredAt": 5, "lastFingerprint": "fp", "lastFingerprintAt": 5}
                }
            }
        ),
        encoding="utf-8",
    )

    state = mirror_state_store(path).load()

    assert state.by_session["s-1"] == MirrorStateEntry(
        last_mirrored_at=5, last_fingerprint="fp", last_fingerprint_at=5
    )


def test_save_failure_is_logged_not_raised(tmp_path: Path, caplog) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = mirror_state_store(blocker / "mirror-state.json")

    with caplog.at_level("WARNING"):
        assert store.save(MirrorState()) is False

    assert "Failed to persist state file" in caplog.text
