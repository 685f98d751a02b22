"""Pydantic models for the session registry and the subagent run ledger."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..timeutil import finite_number

RunSignal = Literal["failed", "completed", "queued", "running", "none"]

RUNNING_STATUS_TOKENS = frozenset({"running", "in_progress", "in-progress", "active", "processing"})
QUEUED_STATUS_TOKENS = frozenset({"queued", "queue", "pending", "created", "scheduled", "waiting"})
COMPLETED_STATUS_TOKENS = frozenset(
    {"done", "completed", "complete", "success", "succeeded", "ok", "finished"}
)
FAILED_STATUS_TOKENS = frozenset(
    {"failed", "error", "errored", "failure", "timeout", "timed_out", "timed-out"}
)


def classify_status_tokens(candidates: list[str]) -> RunSignal:
    """Collapse a run's status tokens using failed > completed > queued > running precedence."""

    tokens = set(candidates)
    if tokens & FAILED_STATUS_TOKENS:
        return "failed"
    if tokens & COMPLETED_STATUS_TOKENS:
        return "completed"
    if tokens & QUEUED_STATUS_TOKENS:
        return "queued"
    if tokens & RUNNING_STATUS_TOKENS:
        return "running"
    return "none"


def _optional_text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


class SessionRecord(BaseModel):
    """One active session known to the OpenClaw session registry."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: str = Field(..., description="Hierarchical session key, e.g. agent:main:main.")
    session_id: str | None = Field(default=None, alias="sessionId")
    updated_at: float | None = Field(default=None, alias="updatedAt")
    age_ms: float | None = Field(default=None, alias="ageMs")
    session_file: str | None = Field(default=None, alias="sessionFile")
    model: str | None = None

    @field_validator("key", mode="before")
    @classmethod
    def _coerce_key(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("session_id", "session_file", "model", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return _optional_text(value)

    @field_validator("updated_at", "age_ms", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> float | None:
        return finite_number(value)


class SubagentRunRecord(BaseModel):
    """One delegated unit of work tied to a child session."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    child_session_key: str = Field(default="", alias="childSessionKey")
    run_id: str | None = Field(default=None, alias="runId")
    requester_session_key: str | None = Field(default=None, alias="requesterSessionKey")
    requester_origin: dict[str, Any] | None = Field(default=None, alias="requesterOrigin")
    label: str | None = None
    task: str | None = None
    model: str | None = None
    run_timeout_seconds: float | None = Field(default=None, alias="runTimeoutSeconds")
    created_at: float | None = Field(default=None, alias="createdAt")
    started_at: float | None = Field(default=None, alias="startedAt")
    ended_at: float | None = Field(default=None, alias="endedAt")
    status: str | None = None
    state: str | None = None
    phase: str | None = None
    outcome: dict[str, Any] | None = None
    signal: RunSignal = Field(
        default="none",
        description="Status tokens resolved once at ingestion; never read from input.",
        exclude=True,
    )

    @field_validator("child_session_key", mode="before")
    @classmethod
    def _coerce_child_key(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator(
        "run_id", "requester_session_key", "label", "task", "model", "status", "state", "phase",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return _optional_text(value)

    @field_validator(
        "run_timeout_seconds", "created_at", "started_at", "ended_at", mode="before"
    )
    @classmethod
    def _coerce_number(cls, value: Any) -> float | None:
        return finite_number(value)

    @field_validator("requester_origin", "outcome", mode="before")
    @classmethod
    def _coerce_mapping(cls, value: Any) -> dict[str, Any] | None:
        return value if isinstance(value, dict) else None

    @model_validator(mode="after")
    def _resolve_signal(self) -> "SubagentRunRecord":
        self.signal = classify_status_tokens(self.status_candidates)
        return self

    @property
    def status_candidates(self) -> list[str]:
        outcome_status = (self.outcome or {}).get("status")
        raw = [self.status, self.state, self.phase, outcome_status if isinstance(outcome_status, str) else None]
        return [token for token in ((value or "").strip().lower() for value in raw) if token]

    @property
    def requester_channel(self) -> str | None:
        channel = (self.requester_origin or {}).get("channel")
        if isinstance(channel, str) and channel.strip():
            return channel.strip()
        return None


__all__ = [
    "COMPLETED_STATUS_TOKENS",
    "FAILED_STATUS_TOKENS",
    "QUEUED_STATUS_TOKENS",
    "RUNNING_STATUS_TOKENS",
    "RunSignal",
    "SessionRecord",
    "SubagentRunRecord",
    "classify_status_tokens",
]
