"""Workflow definition models loaded from the catalog."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class WorkflowPhase(BaseModel):
    """A named step within a workflow with guidance and suggested actions."""

    name: str = Field(..., description="Display name of the phase.")
    guidance: str = Field(default="", description="What the phase is about.")
    suggestions: list[str] = Field(
        default_factory=list,
        description="Suggested actions; their count sizes the phase.",
    )

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Phase name must not be empty")
        return normalized

    @field_validator("suggestions", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise TypeError("Phase suggestions must be a sequence of strings")

    @property
    def suggestion_count(self) -> int:
        return len(self.suggestions)


class Workflow(BaseModel):
    """An ordered sequence of phases guiding a kind of task."""

    name: str = Field(..., description="Display name of the workflow.")
    description: str = Field(default="", description="One-line summary.")
    trigger_hints: list[str] = Field(
        default_factory=list,
        description="Situations where this workflow is a good fit.",
    )
    phases: list[WorkflowPhase] = Field(..., min_length=1)

    @field_validator("trigger_hints", mode="before")
    @classmethod
    def _ensure_hints(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Trigger hints must be a sequence of strings")

    def phase_at(self, index: int) -> WorkflowPhase | None:
        if 0 <= index < len(self.phases):
            return self.phases[index]
        return None


__all__ = ["Workflow", "WorkflowPhase"]
