"""Cumulative usage statistics, streaks and milestones."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from ..logsink import LogSink, logger_sink
from ..storage.jsonfile import JsonFile, describe_error
from ..storage.models import Milestone, ProgressStats
from ..storage.sanitize import merge_milestones, sanitize_stats

logger = logging.getLogger(__name__)

PROGRESS_FILENAME = "progress-tracker.json"
CORE_WORKFLOW_TYPES = ("tdd", "bug-hunt", "general", "rapid", "refactor")
CONSISTENT_USAGE_DAYS = 7
RAPID_ADOPTION_WORKFLOWS = 3
EFFICIENT_AVERAGE_MINUTES = 30


def milestone_catalog() -> list[Milestone]:
    return [
        Milestone(
            id="first_workflow_completion",
            name="First Workflow Mastery",
            description="Complete your first full workflow",
            icon="🎉",
        ),
        Milestone(
            id="five_workflows_completed",
            name="Workflow Veteran",
            description="Complete 5 workflows",
            icon="🏆",
        ),
        Milestone(
            id="consistent_usage",
            name="Workflow Discipline",
            description="Use workflows on 7 consecutive days",
            icon="⭐",
        ),
        Milestone(
            id="workflow_diversity",
            name="Multi-Workflow Mastery",
            description="Use all 5 core workflow types",
            icon="🌟",
        ),
        Milestone(
            id="rapid_adoption",
            name="Quick Learner",
            description="Complete 3 workflows on your first day",
            icon="🚀",
        ),
        Milestone(
            id="efficiency_master",
            name="Efficiency Master",
            description="Average under 30 minutes per workflow",
            icon="⚡",
        ),
    ]


def _local_now() -> datetime:
    return datetime.now().astimezone()


class ProgressTracker:
    """Tracks steps, completed workflows, day streaks and milestones.

    Every mutation is written through to ``progress-tracker.json``. Inside a
    running event loop the write is scheduled as a task (see :meth:`flush`);
    outside one it happens synchronously.
    """

    def __init__(
        self,
        home: Path,
        *,
        clock: Callable[[], datetime] | None = None,
        log: LogSink | None = None,
    ) -> None:
        self._file = JsonFile(Path(home) / PROGRESS_FILENAME)
        self._clock = clock or _local_now
        self._log = log or logger_sink(logger)
        self._stats = ProgressStats()
        self._milestones = milestone_catalog()
        self._loaded = False
        self._usable = True
        self._load_task: asyncio.Task[bool] | None = None
        self._pending: set[asyncio.Task[bool]] = set()
        try:
            self._load_task = asyncio.get_running_loop().create_task(self._load())
        except RuntimeError:
            pass

    @property
    def path(self) -> Path:
        return self._file.path

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def wait_for_load(self) -> bool:
        """Load persisted progress once; concurrent callers share the load.

        Returns False when a stored file existed but could not be used.
        """

        if self._loaded:
            return self._usable
        loop = asyncio.get_running_loop()
        task = self._load_task
        if task is None or task.get_loop() is not loop:
            task = loop.create_task(self._load())
            self._load_task = task
        try:
            return await task
        except Exception as exc:
            if self._load_task is task:
                self._load_task = None
            self._log("WARN", f"Progress load failed: {describe_error(exc)}")
            return False

    async def _load(self) -> bool:
        try:
            document = await self._file.read()
        except FileNotFoundError:
            document = None
        except (OSError, ValueError) as exc:
            return self._restore(None, exc)
        return self._restore(document)

    def _ensure_loaded(self) -> None:
        """Load synchronously when a caller gets here before :meth:`wait_for_load`."""

        if self._loaded:
            return
        try:
            document = self._file.read_sync()
        except FileNotFoundError:
            document = None
        except (OSError, ValueError) as exc:
            self._restore(None, exc)
            return
        self._restore(document)

    def _restore(self, document: Any, error: BaseException | None = None) -> bool:
        # a load that finishes after another one already applied is dropped
        if self._loaded:
            return self._usable
        self._loaded = True

        if error is not None:
            self._log("WARN", f"Progress data unreadable, using defaults: {describe_error(error)}")
            self._usable = False
            return False
        if document is None:
            return True
        if not isinstance(document, dict):
            self._log("WARN", "Progress data has unexpected shape, using defaults")
            self._usable = False
            return False

        now = self._clock()
        self._stats = sanitize_stats(document.get("stats"), now)
        self._milestones = merge_milestones(milestone_catalog(), document.get("milestones"), now)
        self._log(
            "DEBUG",
            f"Progress restored: {self._stats.total_workflows_completed} workflows, "
            f"{self._stats.total_steps_completed} steps",
        )
        return True

    def record_step_completion(self, workflow_type: str, note: str | None = None) -> list[Milestone]:
        self._ensure_loaded()
        now = self._clock()
        self._stats.total_steps_completed += 1
        self._touch(now)
        self._track_usage(workflow_type)
        return self._commit()

    def record_workflow_completion(
        self, workflow_type: str, steps_completed: int, minutes_spent: float
    ) -> list[Milestone]:
        self._ensure_loaded()
        now = self._clock()
        stats = self._stats
        stats.total_workflows_completed += 1
        stats.time_spent_minutes += max(0.0, float(minutes_spent))
        completed = stats.total_workflows_completed
        stats.average_steps_per_workflow = (
            stats.average_steps_per_workflow * (completed - 1) + max(0, steps_completed)
        ) / completed
        self._touch(now)
        if self._is_first_day(now):
            stats.first_day_workflows_completed += 1
        self._track_usage(workflow_type)
        return self._commit()

    def record_progress_check(self) -> None:
        self._ensure_loaded()
        self._touch(self._clock())
        self._commit()

    def reset_stats(self) -> None:
        self._loaded = True
        self._usable = True
        self._stats = ProgressStats()
        self._milestones = milestone_catalog()
        self._persist()

    def get_stats(self) -> ProgressStats:
        self._ensure_loaded()
        return self._stats.model_copy(deep=True)

    def get_milestones(self) -> list[Milestone]:
        self._ensure_loaded()
        return [milestone.model_copy() for milestone in self._milestones]

    def get_achieved_milestones(self) -> list[Milestone]:
        self._ensure_loaded()
        return [milestone.model_copy() for milestone in self._milestones if milestone.achieved]

    def get_next_milestone(self) -> Milestone | None:
        self._ensure_loaded()
        for milestone in self._milestones:
            if not milestone.achieved:
                return milestone.model_copy()
        return None

    async def save_state(self) -> bool:
        self._ensure_loaded()
        return await self._write(self._payload(), self._file.next_generation())

    async def flush(self) -> None:
        """Wait for write-through saves scheduled on the running loop."""

        loop = asyncio.get_running_loop()
        pending = [task for task in self._pending if task.get_loop() is loop and not task.done()]
        if pending:
            await asyncio.gather(*pending)

    def _payload(self) -> dict[str, Any]:
        return {
            "stats": self._stats.model_dump(mode="json"),
            "milestones": [milestone.model_dump(mode="json") for milestone in self._milestones],
            "saved_at": self._clock().isoformat(),
        }

    async def _write(self, payload: dict[str, Any], generation: int) -> bool:
        try:
            await self._file.write(payload, generation)
        except Exception as exc:
            self._log("WARN", f"Failed to save progress: {describe_error(exc)}")
            return False
        return True

    def _persist(self) -> None:
        payload = self._payload()
        generation = self._file.next_generation()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            try:
                self._file.write_sync(payload, generation)
            except Exception as exc:
                self._log("WARN", f"Failed to save progress: {describe_error(exc)}")
            return

        task = loop.create_task(self._write(payload, generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _commit(self) -> list[Milestone]:
        achieved = self._check_milestones()
        self._persist()
        return achieved

    def _touch(self, now: datetime) -> None:
        stats = self._stats
        self._update_streak(now)
        stats.longest_streak = max(stats.longest_streak, stats.current_streak)
        if stats.first_activity_date is None:
            stats.first_activity_date = now
        stats.last_activity_date = now

    def _update_streak(self, now: datetime) -> None:
        stats = self._stats
        previous = stats.last_activity_date
        if previous is None or stats.current_streak == 0:
            stats.current_streak = 1
            return

        days = (now.date() - previous.astimezone(now.tzinfo).date()).days
        if days == 1:
            stats.current_streak += 1
        elif days > 1:
            stats.current_streak = 1

    def _is_first_day(self, now: datetime) -> bool:
        first = self._stats.first_activity_date
        return first is not None and first.astimezone(now.tzinfo).date() == now.date()

    def _track_usage(self, workflow_type: str) -> None:
        usage = self._stats.workflow_type_usage
        usage[workflow_type] = usage.get(workflow_type, 0) + 1

    def _check_milestones(self) -> list[Milestone]:
        newly_achieved: list[Milestone] = []
        now = self._clock()
        for milestone in self._milestones:
            if not milestone.achieved and self._is_achieved(milestone.id):
                milestone.achieved = True
                milestone.achieved_at = now
                newly_achieved.append(milestone.model_copy())
        for milestone in newly_achieved:
            self._log("INFO", f"Milestone achieved: {milestone.icon} {milestone.name}")
        return newly_achieved

    def _is_achieved(self, milestone_id: str) -> bool:
        stats = self._stats
        if milestone_id == "first_workflow_completion":
            return stats.total_workflows_completed >= 1
        if milestone_id == "five_workflows_completed":
            return stats.total_workflows_completed >= 5
        if milestone_id == "consistent_usage":
            return stats.current_streak >= CONSISTENT_USAGE_DAYS
        if milestone_id == "workflow_diversity":
            return all(kind in stats.workflow_type_usage for kind in CORE_WORKFLOW_TYPES)
        if milestone_id == "rapid_adoption":
            return stats.first_day_workflows_completed >= RAPID_ADOPTION_WORKFLOWS
        if milestone_id == "efficiency_master":
            completed = stats.total_workflows_completed
            return completed > 0 and stats.time_spent_minutes / completed < EFFICIENT_AVERAGE_MINUTES
        return False


__all__ = ["CORE_WORKFLOW_TYPES", "PROGRESS_FILENAME", "ProgressTracker", "milestone_catalog"]
