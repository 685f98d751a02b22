"""Control template models for spawning subagents from the dashboard."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..openclaw.gateway import ThinkingLevel


class ControlTemplate(BaseModel):
    """A canned subagent assignment an operator can spawn from any session."""

    id: str = Field(..., description="Unique identifier, e.g. research-brief.")
    title: str = Field(..., description="Display title for the template.")
    prompt: str = Field(..., description="Task text handed to the spawned subagent.")
    label: str | None = Field(
        default=None,
        description="Run label for the spawned subagent; defaults to the template id.",
    )
    thinking: ThinkingLevel | None = Field(
        default=None,
        description="Thinking-effort hint forwarded with the spawn request.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Control template id must not be empty")
        return normalized

    @field_validator("prompt")
    @classmethod
    def _require_prompt(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Control template prompt must not be empty")
        return value.strip()

    @property
    def run_label(self) -> str:
        return (self.label or self.id).strip()


BUILTIN_TEMPLATES: dict[str, ControlTemplate] = {
    template.id: template
    for template in (
        ControlTemplate(
            id="research-brief",
            title="Research brief",
            label="research-brief",
            thinking="low",
            prompt=(
                "Produce a concise research brief on the topic currently being discussed in the "
                "requesting session. Summarize the key findings, list open questions, and cite "
                "the sources you relied on. Keep it under 400 words."
            ),
        ),
        ControlTemplate(
            id="bug-triage",
            title="Bug triage",
            label="bug-triage",
            thinking="medium",
            prompt=(
                "Triage the most recent bug report raised in the requesting session. Reproduce it "
                "if possible, identify the likely root cause, estimate severity, and propose the "
                "smallest safe fix. Report back with findings and next steps."
            ),
        ),
        ControlTemplate(
            id="build-feature",
            title="Build feature",
            label="build-feature",
            thinking="medium",
            prompt=(
                "Implement the feature most recently agreed on in the requesting session. Break the "
                "work into small steps, make the changes with tests, and report what was built, "
                "what was verified, and anything left unfinished."
            ),
        ),
    )
}


__all__ = ["BUILTIN_TEMPLATES", "ControlTemplate"]
