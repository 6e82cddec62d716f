"""Fail-independent save and load across the three state owners."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Sequence

from ..behavior.learning import AdaptiveLearningEngine
from ..behavior.progress import ProgressTracker
from ..logsink import LogSink, logger_sink
from ..storage.jsonfile import describe_error
from ..storage.models import WorkflowState
from .workflow_state import WorkflowStateManager

logger = logging.getLogger(__name__)

OWNER_NAMES = ("WorkflowStateManager", "ProgressTracker", "AdaptiveLearningEngine")


@dataclass(slots=True)
class SaveResult:
    success: bool
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class LoadResult:
    workflow_state: WorkflowState | None
    progress_loaded: bool
    learning_loaded: bool


def _failures(results: Sequence[Any]) -> list[str]:
    errors: list[str] = []
    for name, result in zip(OWNER_NAMES, results):
        if isinstance(result, BaseException):
            errors.append(f"{name}: {describe_error(result)}")
        elif result is False:
            errors.append(f"{name}: save reported failure")
    return errors


class StateCoordinator:
    """Saves and loads every state owner without letting one failure stop the rest.

    There is no transaction across the three files. Each owner writes its own
    file atomically and the coordinator reports which of them failed.
    """

    def __init__(
        self,
        workflow_state: WorkflowStateManager,
        progress: ProgressTracker,
        learning: AdaptiveLearningEngine,
        *,
        log: LogSink | None = None,
    ) -> None:
        self._workflow_state = workflow_state
        self._progress = progress
        self._learning = learning
        self._log = log or logger_sink(logger)

    @property
    def workflow_state(self) -> WorkflowStateManager:
        return self._workflow_state

    @property
    def progress(self) -> ProgressTracker:
        return self._progress

    @property
    def learning(self) -> AdaptiveLearningEngine:
        return self._learning

    async def save_all(
        self,
        workflow_id: str,
        phase_index: int,
        phase_progress: Mapping[str, Sequence[str]],
        *,
        started_at: datetime | None = None,
    ) -> SaveResult:
        state = self._workflow_state.snapshot(
            workflow_id, phase_index, phase_progress, started_at
        )
        results = await asyncio.gather(
            self._workflow_state.save(state),
            self._progress.save_state(),
            self._learning.save_user_profile(),
            return_exceptions=True,
        )
        errors = _failures(results)
        for error in errors:
            self._log("WARN", f"State save failed: {error}")
        return SaveResult(success=not errors, errors=errors)

    async def load_all(self) -> LoadResult:
        workflow_result, progress_result, learning_result = await asyncio.gather(
            self._workflow_state.load(),
            self._progress.wait_for_load(),
            self._learning.load_user_profile(),
            return_exceptions=True,
        )
        for name, result in zip(OWNER_NAMES, (workflow_result, progress_result, learning_result)):
            if isinstance(result, BaseException):
                self._log("WARN", f"State load failed: {name}: {describe_error(result)}")

        return LoadResult(
            workflow_state=workflow_result if isinstance(workflow_result, WorkflowState) else None,
            progress_loaded=progress_result is True,
            learning_loaded=learning_result is True,
        )

    async def clear_all(self) -> None:
        """Reset workflow position and progress statistics.

        The learning profile is left alone.
        """

        results = await asyncio.gather(
            self._workflow_state.clear(),
            self._reset_progress(),
            return_exceptions=True,
        )
        for name, result in zip(OWNER_NAMES, results):
            if isinstance(result, BaseException):
                self._log("WARN", f"State clear failed: {name}: {describe_error(result)}")

    async def _reset_progress(self) -> None:
        self._progress.reset_stats()
        await self._progress.flush()

    def get_state_status(self) -> dict[str, Any]:
        current = self._workflow_state.current
        stats = self._progress.get_stats()
        profile = self._learning.get_user_profile()
        return {
            "workflow": {
                "current_workflow": current.workflow_id if current else None,
                "current_phase": current.phase_index if current else 0,
                "last_updated": current.last_updated.isoformat() if current else None,
            },
            "progress": {
                "total_workflows": stats.total_workflows_completed,
                "total_steps": stats.total_steps_completed,
                "current_streak": stats.current_streak,
                "longest_streak": stats.longest_streak,
                "milestones_achieved": len(self._progress.get_achieved_milestones()),
            },
            "learning": {
                "total_sessions": profile.behavior_metrics.total_sessions,
                "workflows_tracked": len(profile.workflow_patterns),
                "achievements": len(profile.achievements),
                "flow_active": self._learning.get_flow_state().is_active,
            },
        }


__all__ = ["LoadResult", "OWNER_NAMES", "SaveResult", "StateCoordinator"]
