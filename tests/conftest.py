from __future__ import annotations

from pathlib import Path

import pytest

from mission_control.config import MissionControlSettings


@pytest.fixture
def settings(tmp_path: Path) -> MissionControlSettings:
    sessions_dir = tmp_path / "sessions"
    sessions_dir.mkdir()
    return MissionControlSettings(
        openclaw_path=None,
        sessions_dir=sessions_dir,
        subagent_runs_file=tmp_path / "subagents" / "runs.json",
        state_dir=tmp_path / "state",
        chroma_persist_path=tmp_path / "chroma",
        template_paths=(tmp_path / "templates",),
    )
