"""Field-by-field repair of persisted documents.

Every function here accepts arbitrary decoded JSON and returns a valid model.
A field of the wrong type is replaced by its default, malformed list elements
are dropped individually, and unparseable dates become ``now``.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Iterable

from .models import (
    CELEBRATION_LEVELS,
    Achievement,
    BehaviorMetrics,
    ContextPattern,
    Milestone,
    Preferences,
    ProgressStats,
    UserProfile,
    WorkflowPattern,
    new_user_id,
)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_date(value: Any) -> datetime | None:
    """Return a timezone-aware datetime, or None when ``value`` is not one."""

    if isinstance(value, datetime):
        return _aware(value)
    if isinstance(value, str) and value.strip():
        try:
            return _aware(datetime.fromisoformat(value.strip()))
        except ValueError:
            return None
    return None


def sanitize_date(value: Any, now: datetime) -> datetime:
    return parse_date(value) or now


def _optional_date(value: Any, now: datetime) -> datetime | None:
    if value is None:
        return None
    return sanitize_date(value, now)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _number(value: Any, default: float, *, minimum: float | None = None) -> float:
    if not _is_number(value):
        return default
    if minimum is not None and value < minimum:
        return default
    return float(value)


def _count(value: Any, default: int = 0) -> int:
    if not _is_number(value) or value < 0:
        return default
    return int(value)


def _rate(value: Any, default: float) -> float:
    if not _is_number(value):
        return default
    return min(max(float(value), 0.0), 1.0)


def _bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _string(value: Any, default: str) -> str:
    return value if isinstance(value, str) and value else default


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    result: list[str] = []
    for item in value:
        if isinstance(item, str) and item not in result:
            result.append(item)
    return result


def _counter(value: Any) -> dict[str, int]:
    if not isinstance(value, dict):
        return {}
    return {
        key: int(count)
        for key, count in value.items()
        if isinstance(key, str) and _is_number(count) and count >= 0
    }


def _objects(value: Any) -> Iterable[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _celebration(value: Any, default: str) -> str:
    return value if value in CELEBRATION_LEVELS else default


def sanitize_workflow_pattern(raw: Any, now: datetime) -> WorkflowPattern | None:
    if not isinstance(raw, dict):
        return None
    workflow_type = raw.get("workflow_type")
    if not isinstance(workflow_type, str) or not workflow_type:
        return None
    return WorkflowPattern(
        workflow_type=workflow_type,
        completion_rate=_rate(raw.get("completion_rate"), 0.0),
        average_time_minutes=_number(raw.get("average_time_minutes"), 0.0, minimum=0.0),
        preferred_phase_order=_strings(raw.get("preferred_phase_order")),
        common_stuck_points=_strings(raw.get("common_stuck_points")),
        successful_strategies=_strings(raw.get("successful_strategies")),
        last_used=sanitize_date(raw.get("last_used"), now),
        total_completions=_count(raw.get("total_completions")),
    )


def sanitize_context_pattern(raw: Any, now: datetime) -> ContextPattern | None:
    if not isinstance(raw, dict):
        return None
    chosen = raw.get("chosen_workflow")
    if not isinstance(chosen, str) or not chosen:
        return None
    words = [word.lower() for word in _strings(raw.get("trigger_words"))]
    return ContextPattern(
        trigger_words=list(dict.fromkeys(words)),
        chosen_workflow=chosen,
        success_rate=_rate(raw.get("success_rate"), 0.0),
        frequency=_count(raw.get("frequency"), 1),
        last_matched=sanitize_date(raw.get("last_matched"), now),
    )


def sanitize_achievement(raw: Any, now: datetime) -> Achievement | None:
    if not isinstance(raw, dict):
        return None
    achievement_id = raw.get("id")
    if not isinstance(achievement_id, str) or not achievement_id:
        return None
    return Achievement(
        id=achievement_id,
        name=_string(raw.get("name"), achievement_id),
        description=_string(raw.get("description"), ""),
        unlocked_at=sanitize_date(raw.get("unlocked_at"), now),
        category=_string(raw.get("category"), "general"),
    )


def sanitize_behavior_metrics(raw: Any) -> BehaviorMetrics:
    defaults = BehaviorMetrics()
    if not isinstance(raw, dict):
        return defaults
    return BehaviorMetrics(
        total_session_time=_number(raw.get("total_session_time"), 0.0, minimum=0.0),
        average_session_length=_number(raw.get("average_session_length"), 0.0, minimum=0.0),
        total_sessions=_count(raw.get("total_sessions")),
        tool_usage_frequency=_counter(raw.get("tool_usage_frequency")),
        preferred_celebration_level=_celebration(
            raw.get("preferred_celebration_level"), defaults.preferred_celebration_level
        ),
        workflow_switch_frequency=_count(raw.get("workflow_switch_frequency")),
        context_awareness_accuracy=_rate(raw.get("context_awareness_accuracy"), 0.0),
        predictive_hint_acceptance_rate=_rate(raw.get("predictive_hint_acceptance_rate"), 0.0),
        flow_mode_usage=_number(raw.get("flow_mode_usage"), 0.0, minimum=0.0),
    )


def sanitize_preferences(raw: Any) -> Preferences:
    defaults = Preferences()
    if not isinstance(raw, dict):
        return defaults
    return Preferences(
        default_workflow=_string(raw.get("default_workflow"), defaults.default_workflow),
        celebration_level=_celebration(raw.get("celebration_level"), defaults.celebration_level),
        flow_mode_enabled=_bool(raw.get("flow_mode_enabled"), defaults.flow_mode_enabled),
        predictive_hints_enabled=_bool(
            raw.get("predictive_hints_enabled"), defaults.predictive_hints_enabled
        ),
        learning_enabled=_bool(raw.get("learning_enabled"), defaults.learning_enabled),
    )


def _unique_by(items: Iterable[Any], key: str) -> list[Any]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item is None:
            continue
        identity = getattr(item, key)
        if identity in seen:
            continue
        seen.add(identity)
        result.append(item)
    return result


def sanitize_profile(raw: Any, now: datetime) -> UserProfile:
    """Build a complete :class:`UserProfile` from whatever was on disk."""

    if not isinstance(raw, dict):
        return UserProfile(created_at=now, last_active=now)

    workflow_patterns = _unique_by(
        (sanitize_workflow_pattern(item, now) for item in _objects(raw.get("workflow_patterns"))),
        "workflow_type",
    )
    context_patterns = _unique_by(
        (sanitize_context_pattern(item, now) for item in _objects(raw.get("context_patterns"))),
        "chosen_workflow",
    )
    achievements = _unique_by(
        (sanitize_achievement(item, now) for item in _objects(raw.get("achievements"))),
        "id",
    )

    return UserProfile(
        user_id=_string(raw.get("user_id"), new_user_id()),
        created_at=sanitize_date(raw.get("created_at"), now),
        last_active=sanitize_date(raw.get("last_active"), now),
        workflow_patterns=workflow_patterns,
        context_patterns=context_patterns,
        behavior_metrics=sanitize_behavior_metrics(raw.get("behavior_metrics")),
        preferences=sanitize_preferences(raw.get("preferences")),
        personalized_suggestions=_strings(raw.get("personalized_suggestions")),
        achievements=achievements,
    )


def sanitize_stats(raw: Any, now: datetime) -> ProgressStats:
    if not isinstance(raw, dict):
        return ProgressStats()
    current_streak = _count(raw.get("current_streak"))
    return ProgressStats(
        total_workflows_completed=_count(raw.get("total_workflows_completed")),
        total_steps_completed=_count(raw.get("total_steps_completed")),
        current_streak=current_streak,
        longest_streak=max(_count(raw.get("longest_streak")), current_streak),
        last_activity_date=_optional_date(raw.get("last_activity_date"), now),
        first_activity_date=_optional_date(raw.get("first_activity_date"), now),
        first_day_workflows_completed=_count(raw.get("first_day_workflows_completed")),
        workflow_type_usage=_counter(raw.get("workflow_type_usage")),
        average_steps_per_workflow=_number(raw.get("average_steps_per_workflow"), 0.0, minimum=0.0),
        time_spent_minutes=_number(raw.get("time_spent_minutes"), 0.0, minimum=0.0),
    )


def merge_milestones(catalog: Iterable[Milestone], stored: Any, now: datetime) -> list[Milestone]:
    """Overlay stored achievement flags onto a fresh catalog.

    Catalog entries missing from ``stored`` stay unachieved; stored ids that
    are no longer in the catalog are dropped.
    """

    achieved: dict[str, datetime] = {}
    for item in _objects(stored):
        milestone_id = item.get("id")
        if isinstance(milestone_id, str) and item.get("achieved") is True:
            achieved[milestone_id] = sanitize_date(item.get("achieved_at"), now)

    merged: list[Milestone] = []
    for milestone in catalog:
        copy = milestone.model_copy()
        if copy.id in achieved:
            copy.achieved = True
            copy.achieved_at = achieved[copy.id]
        merged.append(copy)
    return merged


__all__ = [
    "merge_milestones",
    "parse_date",
    "sanitize_achievement",
    "sanitize_behavior_metrics",
    "sanitize_context_pattern",
    "sanitize_date",
    "sanitize_preferences",
    "sanitize_profile",
    "sanitize_stats",
    "sanitize_workflow_pattern",
]
