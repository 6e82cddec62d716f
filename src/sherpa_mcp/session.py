"""Phase-advance state machine behind the MCP tools."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from .behavior.learning import FLOW_MODES, AdaptiveHint
from .logsink import LogSink, logger_sink
from .state.coordinator import LoadResult, StateCoordinator
from .storage.models import CELEBRATION_LEVELS, Milestone
from .workflows.completion import PhaseCompletionDetector
from .workflows.detector import detect_from_context, initial_workflow, suggestion_for
from .workflows.models import Workflow, WorkflowPhase

logger = logging.getLogger(__name__)

GUIDE_ACTIONS = ("check", "done", "next", "advance", "tdd", "bug")
SHORTCUTS = {"tdd": "tdd", "bug": "bug-hunt"}

HINT_ICONS = {
    "next-step": "➡️",
    "workflow-suggestion": "🔄",
    "optimization": "⚡",
    "prevention": "⚠️",
    "encouragement": "💪",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class WorkflowSession:
    """Where the user currently is: workflow, phase and notes per phase."""

    workflow_id: str
    phase_index: int = 0
    phase_progress: dict[str, list[str]] = field(default_factory=dict)
    started_at: datetime = field(default_factory=_utcnow)

    def restart(self, workflow_id: str, now: datetime) -> None:
        self.workflow_id = workflow_id
        self.phase_index = 0
        self.phase_progress = {}
        self.started_at = now

    def notes_for(self, phase: WorkflowPhase) -> list[str]:
        return self.phase_progress.get(phase.name, [])

    def total_steps(self) -> int:
        return sum(len(notes) for notes in self.phase_progress.values())


def format_hint(hint: AdaptiveHint) -> str:
    icon = HINT_ICONS.get(hint.type, "💡")
    return f"{icon} **Smart suggestion**: {hint.content}"


class WorkflowSessionController:
    """Drives a workflow session and keeps all state owners in step.

    Each public coroutine returns the plain text shown to the MCP client.
    Unknown actions, workflows and modes are answered with guidance text
    rather than errors.
    """

    def __init__(
        self,
        workflows: Mapping[str, Workflow],
        coordinator: StateCoordinator,
        *,
        detector: PhaseCompletionDetector | None = None,
        clock: Callable[[], datetime] | None = None,
        log: LogSink | None = None,
    ) -> None:
        self._workflows = dict(workflows)
        self._coordinator = coordinator
        self._detector = detector or PhaseCompletionDetector()
        self._clock = clock or _utcnow
        self._log = log or logger_sink(logger)
        self._session = WorkflowSession(
            workflow_id=initial_workflow(self._workflows), started_at=self._clock()
        )

    @property
    def session(self) -> WorkflowSession:
        return self._session

    @property
    def workflows(self) -> dict[str, Workflow]:
        return dict(self._workflows)

    @property
    def coordinator(self) -> StateCoordinator:
        return self._coordinator

    async def start(self) -> LoadResult:
        result = await self._coordinator.load_all()
        restored = result.workflow_state
        if restored is not None and restored.workflow_id in self._workflows:
            workflow = self._workflows[restored.workflow_id]
            self._session = WorkflowSession(
                workflow_id=restored.workflow_id,
                phase_index=min(restored.phase_index, len(workflow.phases) - 1),
                phase_progress={name: list(notes) for name, notes in restored.phase_progress.items()},
                started_at=restored.session_started_at or self._clock(),
            )
            self._log(
                "INFO",
                f"Restored workflow state: {restored.workflow_id} phase {restored.phase_index}",
            )
        else:
            self._session.restart(initial_workflow(self._workflows), self._clock())
            self._log("INFO", f"Starting fresh with {self._session.workflow_id} workflow")

        if result.progress_loaded:
            self._log("INFO", "Progress tracker state loaded")
        if result.learning_loaded:
            self._log("INFO", "Learning engine state loaded")
        return result

    async def shutdown(self) -> bool:
        await self._coordinator.progress.flush()
        return await self._coordinator.learning.end_session()

    async def persist(self) -> bool:
        session = self._session
        result = await self._coordinator.save_all(
            session.workflow_id,
            session.phase_index,
            session.phase_progress,
            started_at=session.started_at,
        )
        if not result.success:
            self._log("WARN", f"State save had errors: {', '.join(result.errors)}")
        return result.success

    async def guide(
        self,
        action: str = "check",
        completed: str | None = None,
        context: str | None = None,
    ) -> str:
        action = (action or "check").strip().lower()
        learning = self._coordinator.learning
        args: dict[str, Any] = {"action": action}
        if completed is not None:
            args["completed"] = completed
        if context is not None:
            args["context"] = context
        learning.record_tool_usage("guide", args)

        if action not in GUIDE_ACTIONS:
            return f"Unknown guide action '{action}'. Use one of: {', '.join(GUIDE_ACTIONS)}."

        workflow = self._workflows.get(self._session.workflow_id)
        if workflow is None:
            return (
                "🏔️ No workflow loaded! Use the `approach` tool to choose a workflow, "
                "then call `guide check`."
            )

        if action in SHORTCUTS:
            target = SHORTCUTS[action]
            if target not in self._workflows:
                return self._unknown_workflow(target)
            await self._switch(target, context)
            return await self._check_or_done("check", None, None)

        if action == "next":
            if context:
                detected = detect_from_context(context, self._workflows, self._session.workflow_id)
                if detected != self._session.workflow_id:
                    await self._switch(detected, context)
            return await self._check_or_done("check", None, None)

        if action == "advance":
            return await self._advance(workflow)

        return await self._check_or_done(action, completed, context)

    async def _switch(self, workflow_id: str, context: str | None) -> None:
        self._session.restart(workflow_id, self._clock())
        self._coordinator.learning.record_workflow_usage(workflow_id, context)
        await self.persist()

    async def _advance(self, workflow: Workflow) -> str:
        session = self._session
        if session.phase_index >= len(workflow.phases) - 1:
            return (
                "🎯 You're already in the final phase! Complete the remaining steps or "
                "start a new workflow with `approach set <workflow>`."
            )

        previous = workflow.phases[session.phase_index]
        session.phase_index += 1
        current = workflow.phases[session.phase_index]
        self._coordinator.learning.record_tool_usage(
            "guide-advance", {"from": previous.name, "to": current.name}
        )
        await self.persist()

        lines = [f"🔄 **Advanced from {previous.name} to {current.name}**", ""]
        lines.extend(self._phase_block(workflow, current, limit=3))
        lines.append("")
        lines.append('🎯 **Next Action**: Work on these steps, then use `guide done "description"`.')
        return "\n".join(lines)

    async def _check_or_done(
        self, action: str, completed: str | None, context: str | None
    ) -> str:
        session = self._session
        workflow = self._workflows[session.workflow_id]
        coordinator = self._coordinator
        learning = coordinator.learning
        progress = coordinator.progress

        sections: list[str] = []
        if action == "check" and context:
            suggestion = suggestion_for(
                detect_from_context(context, self._workflows, session.workflow_id),
                session.workflow_id,
                self._workflows,
            )
            if suggestion:
                sections.append(suggestion)

        if action == "check":
            phase_name = workflow.phases[session.phase_index].name
            hint = learning.generate_adaptive_hint(
                learning.generate_predictive_context(session.workflow_id, phase_name, context)
            )
            if hint is not None:
                sections.append(format_hint(hint))

        progress.record_progress_check()

        phase = workflow.phases[session.phase_index]
        celebrations: list[str] = []
        milestones: list[Milestone] = []
        changed = False

        note = completed if action == "done" and completed else None
        if note:
            session.phase_progress.setdefault(phase.name, []).append(note)
            milestones.extend(progress.record_step_completion(session.workflow_id, note))
            celebrations.append(f"✅ Recorded: {note}")
            changed = True

        notes = session.notes_for(phase)
        phase_complete = self._detector.is_phase_complete(
            session.workflow_id, phase, notes, note
        )
        is_last = session.phase_index >= len(workflow.phases) - 1

        workflow_summary = ""
        if phase_complete and not is_last:
            celebrations.append(f"🎉 Phase complete: {phase.name}")
            session.phase_index += 1
            changed = True
        elif phase_complete and is_last:
            minutes = max((self._clock() - session.started_at).total_seconds() / 60.0, 0.0)
            steps = session.total_steps()
            milestones.extend(
                progress.record_workflow_completion(session.workflow_id, steps, minutes)
            )
            learning.record_workflow_completion(
                session.workflow_id,
                minutes,
                True,
                phase_order=[item.name for item in workflow.phases],
            )
            workflow_summary = (
                f"🏁 **{workflow.name} complete!** {steps} steps in {round(minutes)} minutes."
            )
            session.restart(session.workflow_id, self._clock())
            changed = True

        for milestone in milestones:
            celebrations.append(f"{milestone.icon} Milestone unlocked: **{milestone.name}**")

        if changed:
            await self.persist()

        if self._celebrations_enabled() and celebrations:
            sections.append("\n".join(celebrations))

        current = workflow.phases[session.phase_index]
        current_notes = session.notes_for(current)
        block = self._phase_block(workflow, current)
        block.append("")
        block.append(
            f"Progress: {len(current_notes)}/{current.suggestion_count} steps in this phase"
        )
        sections.append("\n".join(block))

        if workflow_summary:
            sections.append(workflow_summary)

        sections.append(
            '🎯 **Next Action**: Work on the steps above, then call '
            '`guide done "what you completed"` to record progress.'
        )
        return "\n\n".join(sections)

    def _phase_block(
        self, workflow: Workflow, phase: WorkflowPhase, *, limit: int | None = None
    ) -> list[str]:
        position = self._session.phase_index + 1
        lines = [f"**{phase.name}** ({position}/{len(workflow.phases)})"]
        if phase.guidance:
            lines.append(phase.guidance)
        suggestions = phase.suggestions if limit is None else phase.suggestions[:limit]
        if suggestions:
            lines.append("")
            lines.append("**Next steps:**")
            lines.extend(f"• {suggestion}" for suggestion in suggestions)
        return lines

    def _celebrations_enabled(self) -> bool:
        level = self._coordinator.learning.get_user_profile().preferences.celebration_level
        return level != "off"

    def _unknown_workflow(self, name: str) -> str:
        available = list(self._workflows)
        if available:
            suggestion = f"Try one of: {', '.join(available)}"
        else:
            suggestion = "No workflows available. Check your workflows directory."
        return f"🎯 Workflow \"{name}\" not found! {suggestion}"

    async def approach(self, choice: str = "list") -> str:
        choice = (choice or "list").strip()
        learning = self._coordinator.learning

        if choice == "list":
            learning.record_tool_usage("approach", {"set": choice})
            return self._render_workflow_list()

        if choice not in self._workflows:
            learning.record_tool_usage("approach", {"requested": choice})
            return self._unknown_workflow(choice)

        previous = self._session.workflow_id
        # Records workflow usage for the chosen key.
        learning.record_tool_usage("approach", {"set": choice})
        self._session.restart(choice, self._clock())
        await self.persist()

        workflow = self._workflows[choice]
        if previous != choice:
            header = f"🔄 Switching from {previous} to {workflow.name} workflow."
        else:
            header = f"🎯 Restarting {workflow.name} workflow."

        first = workflow.phases[0]
        lines = [header, "", f"**{workflow.name}**"]
        if workflow.description:
            lines.append(workflow.description)
        lines.extend(["", f"**Starting with**: {first.name}"])
        if first.guidance:
            lines.append(first.guidance)
        if first.suggestions:
            lines.extend(["", "**First steps:**"])
            lines.extend(f"• {suggestion}" for suggestion in first.suggestions[:3])
        lines.extend(["", "🎯 **Next Action**: Call `guide check` to get your next step."])
        return "\n".join(lines)

    def _render_workflow_list(self) -> str:
        lines = [f"**Current approach**: {self._session.workflow_id}", "", "**Available approaches:**"]
        for key, workflow in self._workflows.items():
            hints = f" ({', '.join(workflow.trigger_hints)})" if workflow.trigger_hints else ""
            lines.append(f"• **{key}**: {workflow.description}{hints}")
        if not self._workflows:
            lines.append("• none found")

        stats = self._coordinator.progress.get_stats()
        if stats.total_workflows_completed > 0:
            lines.extend(
                [
                    "",
                    f"**Your progress**: {stats.total_workflows_completed} workflows completed, "
                    f"{stats.total_steps_completed} steps total",
                ]
            )

        insights = self._coordinator.learning.get_personalized_suggestions()
        if insights:
            lines.extend(["", "**Smart insights from your patterns:**"])
            lines.extend(f"• {insight}" for insight in insights)

        lines.extend(["", "🎯 **Next Action**: Choose a workflow with `approach set <name>`."])
        return "\n".join(lines)

    async def flow(self, mode: str | None = None, celebration: str | None = None) -> str:
        learning = self._coordinator.learning
        args: dict[str, Any] = {}
        if mode:
            args["mode"] = mode
        if celebration:
            args["celebration"] = celebration
        learning.record_tool_usage("flow", args)

        normalized = (mode or "").strip().lower()
        if normalized and normalized not in FLOW_MODES:
            return f"Unknown flow mode '{mode}'. Use one of: {', '.join(FLOW_MODES)}."
        if celebration and celebration not in CELEBRATION_LEVELS:
            return (
                f"Unknown celebration level '{celebration}'. "
                f"Use one of: {', '.join(CELEBRATION_LEVELS)}."
            )

        lines: list[str] = []
        if normalized:
            state = learning.update_flow_state(normalized)
            if state.is_active:
                seconds = int(state.hint_cooldown.total_seconds())
                lines.append(
                    f"🌊 Flow mode on ({state.intensity}, hints at most every {seconds}s)."
                )
            else:
                lines.append("Flow mode off.")
        if celebration:
            learning.set_celebration_level(celebration)
            lines.append(f"Celebration level set to {celebration}.")

        if not lines:
            state = learning.get_flow_state()
            status = f"on ({state.intensity})" if state.is_active else "off"
            level = learning.get_user_profile().preferences.celebration_level
            return f"Flow mode is {status}; celebration level {level}."

        await self.persist()
        return "\n".join(lines)

    def status(self) -> dict[str, Any]:
        snapshot = self._coordinator.get_state_status()
        session = self._session
        workflow = self._workflows.get(session.workflow_id)
        phase = workflow.phase_at(session.phase_index) if workflow else None
        snapshot["workflow"] = {
            "current_workflow": session.workflow_id,
            "current_phase": session.phase_index,
            "phase_name": phase.name if phase else None,
            "phase_count": len(workflow.phases) if workflow else 0,
            "phase_progress": {name: list(notes) for name, notes in session.phase_progress.items()},
            "started_at": session.started_at.isoformat(),
        }
        next_milestone = self._coordinator.progress.get_next_milestone()
        snapshot["progress"]["next_milestone"] = next_milestone.name if next_milestone else None
        return snapshot


__all__ = ["GUIDE_ACTIONS", "WorkflowSession", "WorkflowSessionController", "format_hint"]
