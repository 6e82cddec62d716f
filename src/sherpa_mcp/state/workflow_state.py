"""Persistence of the in-progress workflow position."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Mapping, Sequence

from pydantic import ValidationError

from ..logsink import LogSink, logger_sink
from ..storage.jsonfile import JsonFile, describe_error
from ..storage.models import WorkflowState

logger = logging.getLogger(__name__)

STATE_FILENAME = "workflow-state.json"
DEFAULT_MAX_AGE = timedelta(hours=24)


class WorkflowStateManager:
    """Saves and restores the current workflow, phase and phase progress.

    Only one snapshot is kept; every save replaces it. Snapshots older than
    ``max_age`` are deleted on load instead of being restored.
    """

    def __init__(
        self,
        home: Path,
        *,
        max_age: timedelta = DEFAULT_MAX_AGE,
        clock: Callable[[], datetime] | None = None,
        log: LogSink | None = None,
    ) -> None:
        self._file = JsonFile(Path(home) / STATE_FILENAME)
        self._max_age = max_age
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = log or logger_sink(logger)
        self._current: WorkflowState | None = None

    @property
    def path(self) -> Path:
        return self._file.path

    @property
    def current(self) -> WorkflowState | None:
        return self._current

    def snapshot(
        self,
        workflow_id: str,
        phase_index: int,
        phase_progress: Mapping[str, Sequence[str]],
        started_at: datetime | None = None,
    ) -> WorkflowState:
        """Build a state.

        Without an explicit ``started_at`` the session start of the last saved
        state is kept when it belongs to the same workflow.
        """

        now = self._clock()
        if started_at is None:
            started_at = now
            if self._current is not None and self._current.workflow_id == workflow_id:
                started_at = self._current.session_started_at or now
        return WorkflowState(
            workflow_id=workflow_id,
            phase_index=max(0, phase_index),
            phase_progress={name: list(notes) for name, notes in phase_progress.items()},
            last_updated=now,
            session_started_at=started_at,
        )

    async def save(self, state: WorkflowState) -> bool:
        stamped = state.model_copy(update={"last_updated": self._clock()})
        if stamped.session_started_at is None:
            stamped.session_started_at = stamped.last_updated
        generation = self._file.next_generation()
        try:
            written = await self._file.write(stamped.model_dump(mode="json"), generation)
        except Exception as exc:
            self._log("WARN", f"Failed to save workflow state: {describe_error(exc)}")
            return False
        if not written:
            self._log("DEBUG", "Skipped stale workflow state write")
            return True
        self._current = stamped
        self._log(
            "DEBUG",
            f"Workflow state saved: {stamped.workflow_id} phase {stamped.phase_index}",
        )
        return True

    async def load(self) -> WorkflowState | None:
        try:
            document = await self._file.read()
        except FileNotFoundError:
            self._log("DEBUG", "No existing workflow state found, starting fresh")
            return None
        except (OSError, ValueError) as exc:
            self._log("DEBUG", f"Unreadable workflow state ignored: {describe_error(exc)}")
            return None

        try:
            state = WorkflowState.model_validate(document)
        except ValidationError as exc:
            self._log("DEBUG", f"Invalid workflow state ignored: {exc.error_count()} errors")
            return None

        if self._clock() - state.last_updated > self._max_age:
            self._log("INFO", "Workflow state too old, starting fresh")
            await self.clear()
            return None

        self._current = state
        self._log("INFO", f"Restored workflow state: {state.workflow_id} phase {state.phase_index}")
        return state

    async def clear(self) -> None:
        try:
            await self._file.delete()
        except OSError as exc:
            self._log("WARN", f"Failed to clear workflow state: {describe_error(exc)}")
        self._current = None


__all__ = ["DEFAULT_MAX_AGE", "STATE_FILENAME", "WorkflowStateManager"]
