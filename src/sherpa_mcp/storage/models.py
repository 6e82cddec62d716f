"""Persisted data models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
import uuid

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


CelebrationLevel = Literal["full", "minimal", "whisper", "off"]
CELEBRATION_LEVELS: tuple[str, ...] = ("full", "minimal", "whisper", "off")


class WorkflowState(BaseModel):
    """Snapshot of where the user is inside a workflow."""

    workflow_id: str
    phase_index: int = Field(default=0, ge=0)
    phase_progress: dict[str, list[str]] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=utcnow)
    session_started_at: datetime | None = None

    @field_validator("last_updated", "session_started_at", mode="after")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ProgressStats(BaseModel):
    total_workflows_completed: int = 0
    total_steps_completed: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: datetime | None = None
    first_activity_date: datetime | None = None
    first_day_workflows_completed: int = 0
    workflow_type_usage: dict[str, int] = Field(default_factory=dict)
    average_steps_per_workflow: float = 0.0
    time_spent_minutes: float = 0.0


class Milestone(BaseModel):
    id: str
    name: str
    description: str
    icon: str = ""
    achieved: bool = False
    achieved_at: datetime | None = None


class WorkflowPattern(BaseModel):
    """Learned statistics for one workflow type."""

    workflow_type: str
    completion_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    average_time_minutes: float = 0.0
    preferred_phase_order: list[str] = Field(default_factory=list)
    common_stuck_points: list[str] = Field(default_factory=list)
    successful_strategies: list[str] = Field(default_factory=list)
    last_used: datetime = Field(default_factory=utcnow)
    total_completions: int = 0


class ContextPattern(BaseModel):
    """Words that preceded choosing a workflow."""

    trigger_words: list[str] = Field(default_factory=list)
    chosen_workflow: str = "general"
    success_rate: float = 1.0
    frequency: int = 1
    last_matched: datetime = Field(default_factory=utcnow)


class BehaviorMetrics(BaseModel):
    total_session_time: float = 0.0
    average_session_length: float = 0.0
    total_sessions: int = 0
    tool_usage_frequency: dict[str, int] = Field(default_factory=dict)
    preferred_celebration_level: CelebrationLevel = "full"
    workflow_switch_frequency: int = 0
    context_awareness_accuracy: float = 0.0
    predictive_hint_acceptance_rate: float = 0.0
    flow_mode_usage: float = 0.0


class Preferences(BaseModel):
    default_workflow: str = "general"
    celebration_level: CelebrationLevel = "full"
    flow_mode_enabled: bool = False
    predictive_hints_enabled: bool = True
    learning_enabled: bool = True


class Achievement(BaseModel):
    id: str
    name: str
    description: str = ""
    unlocked_at: datetime = Field(default_factory=utcnow)
    category: str = "general"


def new_user_id() -> str:
    return f"user_{uuid.uuid4().hex[:12]}"


class UserProfile(BaseModel):
    """Everything the learning engine persists about a user."""

    user_id: str = Field(default_factory=new_user_id)
    created_at: datetime = Field(default_factory=utcnow)
    last_active: datetime = Field(default_factory=utcnow)
    workflow_patterns: list[WorkflowPattern] = Field(default_factory=list)
    context_patterns: list[ContextPattern] = Field(default_factory=list)
    behavior_metrics: BehaviorMetrics = Field(default_factory=BehaviorMetrics)
    preferences: Preferences = Field(default_factory=Preferences)
    personalized_suggestions: list[str] = Field(default_factory=list)
    achievements: list[Achievement] = Field(default_factory=list)

    def workflow_pattern(self, workflow_type: str) -> WorkflowPattern | None:
        for pattern in self.workflow_patterns:
            if pattern.workflow_type == workflow_type:
                return pattern
        return None

    def context_pattern(self, chosen_workflow: str) -> ContextPattern | None:
        for pattern in self.context_patterns:
            if pattern.chosen_workflow == chosen_workflow:
                return pattern
        return None

    def has_achievement(self, achievement_id: str) -> bool:
        return any(achievement.id == achievement_id for achievement in self.achievements)


__all__ = [
    "Achievement",
    "BehaviorMetrics",
    "CELEBRATION_LEVELS",
    "CelebrationLevel",
    "ContextPattern",
    "Milestone",
    "Preferences",
    "ProgressStats",
    "UserProfile",
    "WorkflowPattern",
    "WorkflowState",
    "new_user_id",
    "utcnow",
]
