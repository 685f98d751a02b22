"""Configuration management for Mission Control."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import os

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_MINUTE_MS = 60 * 1000
_DEFAULT_SESSIONS_DIR = Path("~/.openclaw/agents/main/sessions")


class MissionControlSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    openclaw_path: str | None = Field(default=None, validation_alias="OPENCLAW_BIN")
    sessions_dir: Path = Field(
        default=_DEFAULT_SESSIONS_DIR, validation_alias="MISSION_CONTROL_SESSIONS_DIR"
    )
    sessions_index_file: Path | None = Field(
        default=None, validation_alias="MISSION_CONTROL_SESSIONS_INDEX_FILE"
    )
    subagent_runs_file: Path = Field(
        default=Path("~/.openclaw/subagents/runs.json"),
        validation_alias="MISSION_CONTROL_SUBAGENT_RUNS_FILE",
    )
    state_dir: Path = Field(
        default=Path("/tmp/mission-control-dashboard"), validation_alias="MISSION_CONTROL_STATE_DIR"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    template_paths: tuple[Path, ...] = Field(
        default=(Path("templates"),), validation_alias="MISSION_CONTROL_TEMPLATE_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="MISSION_CONTROL_LOG_LEVEL")
    main_session_key: str = Field(
        default="agent:main:main", validation_alias="MISSION_CONTROL_MAIN_SESSION_KEY"
    )

    recent_age_ms: int = Field(default=20 * _MINUTE_MS, validation_alias="MISSION_CONTROL_RECENT_AGE_MS")
    idle_age_ms: int = Field(default=120 * _MINUTE_MS, validation_alias="MISSION_CONTROL_IDLE_AGE_MS")
    active_window_minutes: int = Field(
        default=360, validation_alias="MISSION_CONTROL_ACTIVE_WINDOW_MINUTES"
    )
    max_agent_columns: int = Field(default=8, validation_alias="MISSION_CONTROL_MAX_AGENT_COLUMNS")
    max_messages_per_agent: int = Field(
        default=40, validation_alias="MISSION_CONTROL_MAX_MESSAGES_PER_AGENT"
    )
    max_message_chars: int = Field(default=6000, validation_alias="MISSION_CONTROL_MAX_MESSAGE_CHARS")
    max_lines_per_session_scan: int = Field(
        default=4000, validation_alias="MISSION_CONTROL_MAX_LINES_PER_SESSION_SCAN"
    )
    max_lines_for_model_scan: int = Field(
        default=120, validation_alias="MISSION_CONTROL_MAX_LINES_FOR_MODEL_SCAN"
    )
    model_cache_size: int = Field(default=256, validation_alias="MISSION_CONTROL_MODEL_CACHE_SIZE")

    mirror_cooldown_ms: int = Field(
        default=90 * 1000, validation_alias="MISSION_CONTROL_MIRROR_COOLDOWN_MS"
    )
    mirror_dedupe_window_ms: int = Field(
        default=10 * _MINUTE_MS, validation_alias="MISSION_CONTROL_MIRROR_DEDUPE_WINDOW_MS"
    )
    stalled_threshold_ms: int = Field(
        default=20 * _MINUTE_MS, validation_alias="MISSION_CONTROL_STALLED_THRESHOLD_MS"
    )
    watchdog_scan_cooldown_ms: int = Field(
        default=60 * 1000, validation_alias="MISSION_CONTROL_WATCHDOG_SCAN_COOLDOWN_MS"
    )
    watchdog_retry_cooldown_ms: int = Field(
        default=30 * _MINUTE_MS, validation_alias="MISSION_CONTROL_WATCHDOG_RETRY_COOLDOWN_MS"
    )
    gateway_call_timeout_ms: int = Field(
        default=60 * 1000, validation_alias="MISSION_CONTROL_GATEWAY_CALL_TIMEOUT_MS"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "MISSION_CONTROL_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("template_paths", mode="before")
    @classmethod
    def _parse_template_paths(cls, value):
        if value is None or value == "":
            return (Path("templates"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("templates"),)
        raise TypeError(
            "MISSION_CONTROL_TEMPLATE_PATHS must be a list of paths or a path-separated string"
        )

    @field_validator(
        "recent_age_ms",
        "idle_age_ms",
        "active_window_minutes",
        "max_agent_columns",
        "max_messages_per_agent",
        "max_message_chars",
        "max_lines_per_session_scan",
        "max_lines_for_model_scan",
        "model_cache_size",
        "mirror_cooldown_ms",
        "mirror_dedupe_window_ms",
        "stalled_threshold_ms",
        "watchdog_scan_cooldown_ms",
        "watchdog_retry_cooldown_ms",
        "gateway_call_timeout_ms",
    )
    @classmethod
    def _validate_positive(cls, value: int, info) -> int:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @model_validator(mode="after")
    def _default_index_file(self) -> "MissionControlSettings":
        if self.sessions_index_file is None:
            self.sessions_index_file = self.sessions_dir / "sessions.json"
        return self

    @property
    def mirror_state_file(self) -> Path:
        return self.state_dir / "mirror-state.json"

    @property
    def watchdog_state_file(self) -> Path:
        return self.state_dir / "watchdog-state.json"


@lru_cache(maxsize=1)
def get_settings() -> MissionControlSettings:
    """Return cached settings instance."""

    settings = MissionControlSettings()
    settings.sessions_dir = settings.sessions_dir.expanduser().resolve()
    if settings.sessions_index_file is not None:
        settings.sessions_index_file = settings.sessions_index_file.expanduser().resolve()
    settings.subagent_runs_file = settings.subagent_runs_file.expanduser().resolve()
    settings.state_dir = settings.state_dir.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.template_paths = tuple(path.expanduser().resolve() for path in settings.template_paths)
    return settings


__all__ = ["MissionControlSettings", "get_settings"]
