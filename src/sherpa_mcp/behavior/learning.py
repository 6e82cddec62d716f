"""Adaptive learning profile, flow state and predictive hints."""

from __future__ import annotations

import json
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Literal, Mapping, Sequence

from ..logsink import LogSink, logger_sink
from ..storage.jsonfile import JsonFile, RetryPolicy, describe_error
from ..storage.models import (
    CELEBRATION_LEVELS,
    Achievement,
    ContextPattern,
    UserProfile,
    WorkflowPattern,
)
from ..storage.sanitize import sanitize_profile

logger = logging.getLogger(__name__)

PROFILE_FILENAME = "user-profile.json"
ACTION_HISTORY_LIMIT = 50
RECENT_ACTIONS = 10
STUCK_AFTER = timedelta(minutes=5)
FLOW_COOLDOWNS: dict[str, timedelta] = {
    "gentle": timedelta(seconds=30),
    "active": timedelta(seconds=15),
    "whisper": timedelta(seconds=120),
}
FLOW_MODES = ("on", "gentle", "whisper", "active", "off")

HintType = Literal["next-step", "workflow-suggestion", "optimization", "prevention", "encouragement"]
FlowIntensity = Literal["gentle", "whisper", "active"]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class ProductivityMetrics:
    steps_completed: int = 0
    time_to_completion: float = 0.0
    error_rate: float = 0.0
    flow_state_time: float = 0.0


@dataclass(slots=True)
class LearningSession:
    """In-memory record of the current server session."""

    session_id: str
    start_time: datetime
    end_time: datetime | None = None
    workflows_used: list[str] = field(default_factory=list)
    contexts_provided: list[str] = field(default_factory=list)
    hints_accepted: int = 0
    hints_rejected: int = 0
    celebration_level: str = "full"
    user_satisfaction_signals: int = 0
    productivity_metrics: ProductivityMetrics = field(default_factory=ProductivityMetrics)


@dataclass(slots=True)
class FlowState:
    is_active: bool = False
    intensity: FlowIntensity = "gentle"
    hint_cooldown: timedelta = FLOW_COOLDOWNS["gentle"]
    last_hint_time: datetime = _EPOCH
    active_since: datetime | None = None


@dataclass(slots=True, frozen=True)
class PredictiveContext:
    current_workflow: str
    current_phase: str
    time_in_phase: timedelta
    recent_actions: tuple[str, ...]
    behavior_metrics: dict[str, Any]
    session_context: str
    working_time: timedelta
    is_stuck: bool
    confidence: float


@dataclass(slots=True, frozen=True)
class AdaptiveHint:
    type: HintType
    content: str
    confidence: float
    timing: Literal["immediate", "after-delay", "predictive"]
    priority: Literal["low", "medium", "high"]
    context: str
    learning_basis: tuple[str, ...] = ()


def context_words(text: str) -> list[str]:
    """Lowercase tokens longer than three characters, in first-seen order."""

    words: list[str] = []
    for word in text.lower().split():
        if len(word) > 3 and word not in words:
            words.append(word)
    return words


def _session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


class AdaptiveLearningEngine:
    """Learns from how a user works and turns that into hints.

    The record methods only mutate memory. Persisting is explicit through
    :meth:`save_user_profile` (usually driven by the state coordinator) and
    :meth:`end_session`.
    """

    def __init__(
        self,
        home: Path,
        *,
        clock: Callable[[], datetime] | None = None,
        log: LogSink | None = None,
        retry_policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._file = JsonFile(Path(home) / PROFILE_FILENAME)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = log or logger_sink(logger)
        self._retry = retry_policy or RetryPolicy()
        self._rng = rng or random.Random()

        now = self._clock()
        self._profile = UserProfile(created_at=now, last_active=now)
        self._flow = FlowState()
        self._session = LearningSession(session_id=_session_id(), start_time=now)
        self._last_action_time = now
        self._session_workflow: str | None = None
        self._action_history: list[str] = []

    @property
    def path(self) -> Path:
        return self._file.path

    def get_user_profile(self) -> UserProfile:
        return self._profile

    def get_flow_state(self) -> FlowState:
        return self._flow

    def get_current_session(self) -> LearningSession:
        return self._session

    @property
    def action_history(self) -> list[str]:
        return list(self._action_history)

    def record_tool_usage(self, tool_name: str, args: Mapping[str, Any] | None = None) -> None:
        args = dict(args or {})
        self._last_action_time = self._clock()
        self._action_history.append(f"{tool_name}:{json.dumps(args, sort_keys=True, default=str)}")
        if len(self._action_history) > ACTION_HISTORY_LIMIT:
            del self._action_history[:-ACTION_HISTORY_LIMIT]

        frequency = self._profile.behavior_metrics.tool_usage_frequency
        frequency[tool_name] = frequency.get(tool_name, 0) + 1

        if tool_name == "guide" and args.get("completed"):
            self._session.productivity_metrics.steps_completed += 1

        chosen = args.get("set")
        if tool_name == "approach" and isinstance(chosen, str) and chosen and chosen != "list":
            self.record_workflow_usage(chosen)

    def record_workflow_usage(self, workflow_type: str, context: str | None = None) -> None:
        session = self._session
        if self._session_workflow is not None and self._session_workflow != workflow_type:
            self._profile.behavior_metrics.workflow_switch_frequency += 1
        self._session_workflow = workflow_type

        if workflow_type not in session.workflows_used:
            session.workflows_used.append(workflow_type)
        if context and context not in session.contexts_provided:
            session.contexts_provided.append(context)

        if not self._profile.preferences.learning_enabled:
            return

        pattern = self._profile.workflow_pattern(workflow_type)
        if pattern is None:
            self._ensure_pattern(workflow_type)
        else:
            pattern.last_used = self._clock()

        if context:
            self._learn_context(context, workflow_type)

    def record_workflow_completion(
        self,
        workflow_type: str,
        minutes: float,
        success: bool,
        strategies: Sequence[str] | None = None,
        phase_order: Sequence[str] | None = None,
    ) -> None:
        self._session.productivity_metrics.time_to_completion = minutes
        if not self._profile.preferences.learning_enabled:
            return

        pattern = self._ensure_pattern(workflow_type)
        pattern.total_completions += 1
        completions = pattern.total_completions

        # Plain running mean for the first few completions, then an EMA.
        alpha = max(1.0 / completions, 0.3)
        outcome = 1.0 if success else 0.0
        pattern.completion_rate = min(
            max(pattern.completion_rate + alpha * (outcome - pattern.completion_rate), 0.0), 1.0
        )
        pattern.average_time_minutes = (
            pattern.average_time_minutes * (completions - 1) + max(0.0, minutes)
        ) / completions

        for strategy in strategies or ():
            if strategy not in pattern.successful_strategies:
                pattern.successful_strategies.append(strategy)
        if success and phase_order:
            pattern.preferred_phase_order = list(phase_order)
        pattern.last_used = self._clock()

        self._check_achievements()

    def record_hint_interaction(self, hint: AdaptiveHint, accepted: bool) -> None:
        session = self._session
        if accepted:
            session.hints_accepted += 1
        else:
            session.hints_rejected += 1

        total = session.hints_accepted + session.hints_rejected
        metrics = self._profile.behavior_metrics
        session_rate = session.hints_accepted / total
        metrics.predictive_hint_acceptance_rate = (
            metrics.predictive_hint_acceptance_rate * 0.7 + session_rate * 0.3
        )

        self._flow.last_hint_time = self._clock()
        self._log("DEBUG", f"Hint {hint.type} {'accepted' if accepted else 'rejected'}")
        self._check_achievements()

    def generate_predictive_context(
        self,
        current_workflow: str,
        current_phase: str,
        session_context: str | None = None,
    ) -> PredictiveContext:
        now = self._clock()
        time_in_phase = now - self._last_action_time
        pattern = self._profile.workflow_pattern(current_workflow)
        confidence = (
            min(max(pattern.completion_rate, 0.5) + 0.2, 1.0) if pattern is not None else 0.5
        )
        return PredictiveContext(
            current_workflow=current_workflow,
            current_phase=current_phase,
            time_in_phase=time_in_phase,
            recent_actions=tuple(self._action_history[-RECENT_ACTIONS:]),
            behavior_metrics=self._profile.behavior_metrics.model_dump(mode="json"),
            session_context=session_context or "",
            working_time=now - self._session.start_time,
            is_stuck=time_in_phase >= STUCK_AFTER,
            confidence=confidence,
        )

    def generate_adaptive_hint(self, context: PredictiveContext) -> AdaptiveHint | None:
        """Return the most relevant hint, or None.

        Priority: stuck, known stuck point, better workflow for the context,
        timing optimization. A returned hint starts the cooldown.
        """

        if not self._profile.preferences.predictive_hints_enabled:
            return None
        now = self._clock()
        if now - self._flow.last_hint_time < self._flow.hint_cooldown:
            return None

        hint = (
            self._stuck_hint(context)
            or self._prevention_hint(context)
            or self._workflow_switch_hint(context)
            or self._optimization_hint(context)
        )
        if hint is not None:
            self._flow.last_hint_time = now
        return hint

    def _stuck_hint(self, context: PredictiveContext) -> AdaptiveHint | None:
        if not context.is_stuck:
            return None
        pattern = self._ensure_pattern(context.current_workflow)
        if context.current_phase and context.current_phase not in pattern.common_stuck_points:
            pattern.common_stuck_points.append(context.current_phase)

        content = "Consider taking a step back and reviewing your current approach"
        if pattern.successful_strategies:
            content = f"Based on your past success: {self._rng.choice(pattern.successful_strategies)}"
        return AdaptiveHint(
            type="prevention",
            content=content,
            confidence=0.8,
            timing="immediate",
            priority="high",
            context="User appears stuck in current phase",
            learning_basis=("time_in_phase_analysis", "historical_success_patterns"),
        )

    def _prevention_hint(self, context: PredictiveContext) -> AdaptiveHint | None:
        pattern = self._profile.workflow_pattern(context.current_workflow)
        if pattern is None:
            return None
        stuck_point = next(
            (point for point in pattern.common_stuck_points if point and point in context.current_phase),
            None,
        )
        if stuck_point is None:
            return None
        return AdaptiveHint(
            type="prevention",
            content=(
                f'Watch out: you\'ve previously gotten stuck on "{stuck_point}". '
                "Consider preparing your approach first."
            ),
            confidence=0.7,
            timing="predictive",
            priority="medium",
            context="Historical stuck point detected",
            learning_basis=("stuck_point_analysis", "historical_patterns"),
        )

    def _better_context_pattern(self, context: PredictiveContext) -> ContextPattern | None:
        if not context.session_context:
            return None
        words = set(context.session_context.lower().split())
        for pattern in self._profile.context_patterns:
            if (
                pattern.chosen_workflow != context.current_workflow
                and pattern.success_rate > 0.8
                and any(word in words for word in pattern.trigger_words)
            ):
                return pattern
        return None

    def _workflow_switch_hint(self, context: PredictiveContext) -> AdaptiveHint | None:
        better = self._better_context_pattern(context)
        if better is None:
            return None
        return AdaptiveHint(
            type="workflow-suggestion",
            content=(
                f"Based on your patterns, {better.chosen_workflow} workflow might be more "
                "effective for this context"
            ),
            confidence=better.success_rate,
            timing="predictive",
            priority="medium",
            context="Context analysis suggests better workflow match",
            learning_basis=("context_pattern_analysis", "historical_success_rates"),
        )

    def _optimization_hint(self, context: PredictiveContext) -> AdaptiveHint | None:
        pattern = self._profile.workflow_pattern(context.current_workflow)
        if pattern is None or pattern.total_completions <= 3 or self._rng.random() >= 0.3:
            return None

        content = "Consider batching similar tasks for efficiency"
        usual = timedelta(minutes=pattern.average_time_minutes)
        if usual > timedelta(0) and context.time_in_phase >= usual * 1.5:
            content = "You're taking longer than usual - consider breaking this into smaller steps"
        return AdaptiveHint(
            type="optimization",
            content=content,
            confidence=0.6,
            timing="after-delay",
            priority="low",
            context="Performance optimization opportunity detected",
            learning_basis=("timing_analysis", "efficiency_patterns"),
        )

    def update_flow_state(self, mode: str) -> FlowState:
        """Switch flow mode; unknown modes leave the state untouched."""

        normalized = (mode or "").strip().lower()
        if normalized not in FLOW_MODES:
            self._log("WARN", f"Ignoring unknown flow mode: {mode!r}")
            return self._flow

        now = self._clock()
        flow = self._flow
        if normalized == "off":
            self._accumulate_flow_time(now)
            flow.is_active = False
            self._profile.preferences.flow_mode_enabled = False
            return flow

        intensity: FlowIntensity = "gentle" if normalized == "on" else normalized  # type: ignore[assignment]
        if not flow.is_active:
            flow.active_since = now
        flow.is_active = True
        flow.intensity = intensity
        flow.hint_cooldown = FLOW_COOLDOWNS[intensity]
        self._profile.preferences.flow_mode_enabled = True
        return flow

    def set_celebration_level(self, level: str) -> bool:
        if level not in CELEBRATION_LEVELS:
            self._log("WARN", f"Ignoring unknown celebration level: {level!r}")
            return False
        self._profile.preferences.celebration_level = level  # type: ignore[assignment]
        self._profile.behavior_metrics.preferred_celebration_level = level  # type: ignore[assignment]
        self._session.celebration_level = level
        return True

    def get_personalized_suggestions(self) -> list[str]:
        suggestions: list[str] = []
        profile = self._profile

        best = max(profile.workflow_patterns, key=lambda p: p.completion_rate, default=None)
        if best is not None and best.completion_rate > 0.6:
            suggestions.append(
                f"You excel at {best.workflow_type} workflow "
                f"({round(best.completion_rate * 100)}% success rate)"
            )

        frequent = [pattern for pattern in profile.context_patterns if pattern.frequency >= 2]
        if frequent:
            favourite = max(frequent, key=lambda p: p.success_rate)
            suggestions.append(
                f'Try "{favourite.chosen_workflow}" workflow when working on: '
                f"{', '.join(favourite.trigger_words[:3])}"
            )

        acceptance = profile.behavior_metrics.predictive_hint_acceptance_rate
        if acceptance > 0.6:
            suggestions.append("You respond well to guidance - consider keeping flow mode enabled")
        elif acceptance < 0.5:
            suggestions.append(
                "You prefer independence - try 'whisper' celebration level for minimal interruption"
            )

        profile.personalized_suggestions = suggestions[:3]
        return list(profile.personalized_suggestions)

    async def load_user_profile(self) -> bool:
        """Load and repair the stored profile.

        Returns False when the stored file could not be read or decoded; the
        engine then keeps working with a default profile.
        """

        now = self._clock()
        try:
            document = await self._retry.run(self._read_profile, name="load user profile")
        except ValueError as exc:
            self._log("WARN", f"Profile data corrupted, using defaults: {describe_error(exc)}")
            self._profile = UserProfile(created_at=now, last_active=now)
            await self.save_user_profile()
            return False
        except Exception as exc:
            self._log("ERROR", f"Failed to load user profile: {describe_error(exc)}")
            return False

        if document is _MISSING:
            self._log("DEBUG", "No stored profile, creating one")
            await self.save_user_profile()
            return True

        self._profile = sanitize_profile(document, now)
        self._profile.last_active = now
        self._flow.is_active = self._profile.preferences.flow_mode_enabled
        if self._flow.is_active and self._flow.active_since is None:
            self._flow.active_since = now
        self._session.celebration_level = self._profile.preferences.celebration_level
        return True

    async def _read_profile(self) -> Any:
        try:
            return await self._file.read()
        except FileNotFoundError:
            return _MISSING

    async def save_user_profile(self) -> bool:
        payload = self._profile.model_dump(mode="json")
        generation = self._file.next_generation()
        try:
            await self._retry.run(
                lambda: self._file.write(payload, generation), name="save user profile"
            )
        except Exception as exc:
            self._log("ERROR", f"Failed to save user profile: {describe_error(exc)}")
            return False
        return True

    async def end_session(self) -> bool:
        now = self._clock()
        session = self._session
        session.end_time = now
        self._accumulate_flow_time(now)

        duration = max((now - session.start_time).total_seconds(), 0.001)
        metrics = self._profile.behavior_metrics
        metrics.total_session_time += duration
        metrics.average_session_length = metrics.average_session_length * 0.8 + duration * 0.2
        metrics.total_sessions += 1
        self._profile.last_active = now
        return await self.save_user_profile()

    def _ensure_pattern(self, workflow_type: str) -> WorkflowPattern:
        pattern = self._profile.workflow_pattern(workflow_type)
        if pattern is None:
            pattern = WorkflowPattern(workflow_type=workflow_type, last_used=self._clock())
            self._profile.workflow_patterns.append(pattern)
        return pattern

    def _learn_context(self, context: str, chosen_workflow: str) -> None:
        words = context_words(context)
        pattern = self._profile.context_pattern(chosen_workflow)
        if pattern is None:
            self._profile.context_patterns.append(
                ContextPattern(
                    trigger_words=words,
                    chosen_workflow=chosen_workflow,
                    success_rate=1.0,
                    frequency=1,
                    last_matched=self._clock(),
                )
            )
            return
        pattern.frequency += 1
        pattern.last_matched = self._clock()
        for word in words:
            if word not in pattern.trigger_words:
                pattern.trigger_words.append(word)

    def _accumulate_flow_time(self, now: datetime) -> None:
        flow = self._flow
        if flow.is_active and flow.active_since is not None:
            elapsed = max((now - flow.active_since).total_seconds(), 0.0)
            self._profile.behavior_metrics.flow_mode_usage += elapsed
            self._session.productivity_metrics.flow_state_time += elapsed
        flow.active_since = now if flow.is_active else None

    def _check_achievements(self) -> list[Achievement]:
        profile = self._profile
        unlocked: list[Achievement] = []
        now = self._clock()

        for pattern in profile.workflow_patterns:
            achievement_id = f"mastery_{pattern.workflow_type}"
            if (
                pattern.total_completions >= 3
                and pattern.completion_rate > 0.8
                and not profile.has_achievement(achievement_id)
            ):
                unlocked.append(
                    Achievement(
                        id=achievement_id,
                        name=f"{pattern.workflow_type.upper()} Master",
                        description=(
                            f"Achieved 80%+ success rate with {pattern.total_completions} completions"
                        ),
                        unlocked_at=now,
                        category="workflow_mastery",
                    )
                )

        if (
            profile.behavior_metrics.predictive_hint_acceptance_rate > 0.6
            and not profile.has_achievement("learning_enthusiast")
        ):
            unlocked.append(
                Achievement(
                    id="learning_enthusiast",
                    name="Learning Enthusiast",
                    description="High acceptance rate of adaptive hints",
                    unlocked_at=now,
                    category="engagement",
                )
            )

        if unlocked:
            profile.achievements.extend(unlocked)
            self._session.user_satisfaction_signals += len(unlocked)
            for achievement in unlocked:
                self._log("INFO", f"Achievement unlocked: {achievement.name}")
        return unlocked


_MISSING = object()


__all__ = [
    "AdaptiveHint",
    "AdaptiveLearningEngine",
    "FLOW_COOLDOWNS",
    "FLOW_MODES",
    "FlowState",
    "LearningSession",
    "PROFILE_FILENAME",
    "PredictiveContext",
    "ProductivityMetrics",
    "context_words",
]
