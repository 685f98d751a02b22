from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from mission_control.config import MissionControlSettings, get_settings


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MISSION_CONTROL_SESSIONS_DIR", str(tmp_path / "sessions"))
    monkeypatch.setenv("MISSION_CONTROL_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("MISSION_CONTROL_STALLED_THRESHOLD_MS", "600000")
    monkeypatch.setenv("MISSION_CONTROL_LOG_LEVEL", "debug")
    monkeypatch.setenv("MISSION_CONTROL_TEMPLATE_PATHS", '["one", "two"]')

    settings = MissionControlSettings()

    assert settings.stalled_threshold_ms == 600_000
    assert settings.log_level == "DEBUG"
    assert settings.template_paths == (Path("one"), Path("two"))
    assert settings.sessions_index_file == tmp_path / "sessions" / "sessions.json"
    assert settings.mirror_state_file == tmp_path / "state" / "mirror-state.json"
    assert settings.watchdog_state_file == tmp_path / "state" / "watchdog-state.json"


def test_defaults_match_operational_windows() -> None:
    settings = MissionControlSettings()

    assert settings.mirror_cooldown_ms == 90_000
    assert settings.mirror_dedupe_window_ms == 600_000
    assert settings.stalled_threshold_ms == 1_200_000
    assert settings.watchdog_scan_cooldown_ms == 60_000
    assert settings.watchdog_retry_cooldown_ms == 1_800_000
    assert settings.main_session_key == "agent:main:main"


def test_template_paths_accept_path_separated_string(tmp_path: Path) -> None:
    settings = MissionControlSettings(template_paths=f"{tmp_path / 'a'}:{tmp_path / 'b'}")

    assert settings.template_paths == (tmp_path / "a", tmp_path / "b")


@pytest.mark.parametrize(
    "overrides",
    [
        {"log_level": "chatty"},
        {"stalled_threshold_ms": 0},
        {"max_agent_columns": -1},
    ],
)
def test_invalid_values_are_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        MissionControlSettings(**overrides)


def test_get_settings_expands_paths(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("MISSION_CONTROL_SUBAGENT_RUNS_FILE", "~/runs.json")
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.subagent_runs_file == (tmp_path / "runs.json").resolve()
    assert settings.sessions_dir.is_absolute()
