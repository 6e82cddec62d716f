from datetime import datetime, timedelta, timezone
from pathlib import Path
import asyncio
import json

from sherpa_mcp.behavior import AdaptiveLearningEngine, ProgressTracker
from sherpa_mcp.behavior.learning import PROFILE_FILENAME
from sherpa_mcp.session import WorkflowSessionController
from sherpa_mcp.state import StateCoordinator, WorkflowStateManager
from sherpa_mcp.state.workflow_state import STATE_FILENAME
from sherpa_mcp.storage import RetryPolicy
from sherpa_mcp.workflows import Workflow, WorkflowPhase


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def quiet(level: str, message: str) -> None:
    return None


START = datetime(2025, 9, 1, 9, 0, tzinfo=timezone.utc)

WORKFLOWS = {
    "general": Workflow(
        name="General",
        description="Balanced approach",
        phases=[
            WorkflowPhase(name="Plan", guidance="Understand the task", suggestions=["read code", "write plan"]),
            WorkflowPhase(name="Build", suggestions=["implement"]),
        ],
    ),
    "tdd": Workflow(
        name="Test-Driven Development",
        description="Tests first",
        trigger_hints=["new features"],
        phases=[
            WorkflowPhase(name="Red", suggestions=["write a failing test", "run it"]),
            WorkflowPhase(name="Green", suggestions=["make it pass", "run tests"]),
        ],
    ),
    "bug-hunt": Workflow(
        name="Bug Hunt",
        description="Find and fix",
        phases=[
            WorkflowPhase(name="Reproduce", suggestions=["reproduce"]),
            WorkflowPhase(name="Fix", suggestions=["fix"]),
        ],
    ),
}


def make_controller(
    home: Path, clock: Clock | None = None, workflows: dict | None = None
) -> WorkflowSessionController:
    clock = clock or Clock(START)
    coordinator = StateCoordinator(
        WorkflowStateManager(home, clock=clock, log=quiet),
        ProgressTracker(home, clock=clock, log=quiet),
        AdaptiveLearningEngine(home, clock=clock, log=quiet, retry_policy=RetryPolicy(base_delay=0)),
        log=quiet,
    )
    return WorkflowSessionController(
        WORKFLOWS if workflows is None else workflows, coordinator, clock=clock, log=quiet
    )


def saved_state(home: Path) -> dict:
    return json.loads((home / STATE_FILENAME).read_text(encoding="utf-8"))


def test_start_fresh_uses_general(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    result = asyncio.run(controller.start())

    assert result.workflow_state is None
    assert result.progress_loaded
    assert result.learning_loaded
    assert controller.session.workflow_id == "general"
    assert controller.session.phase_index == 0


def test_done_records_and_advances_phases(tmp_path: Path) -> None:
    clock = Clock(START)
    controller = make_controller(tmp_path, clock)

    async def scenario() -> list[str]:
        await controller.start()
        first = await controller.guide("done", "read the code")
        second = await controller.guide("done", "wrote the plan")
        clock.advance(minutes=12)
        third = await controller.guide("done", "implemented the feature")
        await controller.coordinator.progress.flush()
        return [first, second, third]

    first, second, third = asyncio.run(scenario())

    assert "✅ Recorded: read the code" in first
    assert "Progress: 1/2 steps in this phase" in first

    assert "🎉 Phase complete: Plan" in second
    assert "**Build** (2/2)" in second
    assert "Progress: 0/1 steps in this phase" in second

    assert "🏁 **General complete!** 3 steps in 12 minutes." in third
    assert "🎉 Milestone unlocked: **First Workflow Mastery**" in third
    assert "⚡ Milestone unlocked: **Efficiency Master**" in third

    session = controller.session
    assert session.workflow_id == "general"
    assert session.phase_index == 0
    assert session.phase_progress == {}

    stats = controller.coordinator.progress.get_stats()
    assert stats.total_workflows_completed == 1
    assert stats.total_steps_completed == 3
    pattern = controller.coordinator.learning.get_user_profile().workflow_pattern("general")
    assert pattern.total_completions == 1
    assert pattern.preferred_phase_order == ["Plan", "Build"]


def test_done_persists_phase_progress(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> None:
        await controller.start()
        await controller.guide("done", "read the code")

    asyncio.run(scenario())

    state = saved_state(tmp_path)
    assert state["workflow_id"] == "general"
    assert state["phase_progress"] == {"Plan": ["read the code"]}


def test_restart_restores_session(tmp_path: Path) -> None:
    clock = Clock(START)
    first = make_controller(tmp_path, clock)

    async def record() -> None:
        await first.start()
        await first.approach("tdd")
        await first.guide("done", "sketched the parser api")

    asyncio.run(record())

    clock.advance(hours=1)
    second = make_controller(tmp_path, clock)
    result = asyncio.run(second.start())

    assert result.workflow_state is not None
    assert second.session.workflow_id == "tdd"
    assert second.session.phase_progress == {"Red": ["sketched the parser api"]}
    assert second.session.started_at == START


def test_restored_phase_is_clamped(tmp_path: Path) -> None:
    seed = make_controller(tmp_path)
    asyncio.run(seed.coordinator.save_all("tdd", 7, {}))

    controller = make_controller(tmp_path)
    asyncio.run(controller.start())

    assert controller.session.workflow_id == "tdd"
    assert controller.session.phase_index == 1


def test_unknown_restored_workflow_starts_fresh(tmp_path: Path) -> None:
    seed = make_controller(tmp_path)
    asyncio.run(seed.coordinator.save_all("retired", 0, {}))

    controller = make_controller(tmp_path)
    asyncio.run(controller.start())

    assert controller.session.workflow_id == "general"


def test_advance_moves_to_next_phase(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> tuple[str, str]:
        await controller.start()
        moved = await controller.guide("advance")
        stuck = await controller.guide("advance")
        return moved, stuck

    moved, stuck = asyncio.run(scenario())

    assert "🔄 **Advanced from Plan to Build**" in moved
    assert "already in the final phase" in stuck
    assert saved_state(tmp_path)["phase_index"] == 1


def test_shortcuts_switch_workflow(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> tuple[str, str]:
        await controller.start()
        return await controller.guide("tdd"), await controller.guide("bug")

    tdd_text, bug_text = asyncio.run(scenario())

    assert "**Red** (1/2)" in tdd_text
    assert "**Reproduce** (1/2)" in bug_text
    assert controller.session.workflow_id == "bug-hunt"
    assert controller.coordinator.learning.get_user_profile().behavior_metrics.workflow_switch_frequency == 1


def test_check_with_context_suggests_workflow(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> str:
        await controller.start()
        return await controller.guide("check", context="the export crashes on startup")

    text = asyncio.run(scenario())

    assert text.startswith("💡 I detected you're working on a bug or issue.")
    assert "**Bug Hunt**" in text
    assert controller.session.workflow_id == "general"


def test_next_with_context_switches(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> str:
        await controller.start()
        return await controller.guide("next", context="quick prototype for a demo")

    asyncio.run(scenario())

    # rapid is not in the catalog, so nothing changes.
    assert controller.session.workflow_id == "general"

    async def switch() -> str:
        return await controller.guide("next", context="fix the login error")

    text = asyncio.run(switch())
    assert controller.session.workflow_id == "bug-hunt"
    assert "**Reproduce**" in text


def test_check_shows_adaptive_hint_from_context_patterns(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> str:
        await controller.start()
        controller.coordinator.learning.record_workflow_usage("bug-hunt", "checkout crash")
        return await controller.guide("check", context="checkout crash again")

    text = asyncio.run(scenario())

    assert "🔄 **Smart suggestion**: Based on your patterns, bug-hunt workflow" in text
    assert controller.session.workflow_id == "general"


def test_unknown_action_and_missing_workflows(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)
    empty = make_controller(tmp_path / "empty", workflows={})

    assert asyncio.run(controller.guide("dance")).startswith("Unknown guide action 'dance'")
    assert asyncio.run(empty.guide("check")).startswith("🏔️ No workflow loaded!")
    assert asyncio.run(controller.guide("tdd")).startswith("**Red**")
    assert "not found" in asyncio.run(empty.approach("tdd"))


def test_approach_list_and_switch(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> tuple[str, str, str, str]:
        await controller.start()
        listing = await controller.approach("list")
        switched = await controller.approach("tdd")
        again = await controller.approach("tdd")
        missing = await controller.approach("waterfall")
        return listing, switched, again, missing

    listing, switched, again, missing = asyncio.run(scenario())

    assert "**Current approach**: general" in listing
    assert "• **tdd**: Tests first (new features)" in listing
    assert switched.startswith("🔄 Switching from general to Test-Driven Development workflow.")
    assert "**Starting with**: Red" in switched
    assert again.startswith("🎯 Restarting Test-Driven Development workflow.")
    assert missing == '🎯 Workflow "waterfall" not found! Try one of: general, tdd, bug-hunt'
    assert saved_state(tmp_path)["workflow_id"] == "tdd"


def test_flow_modes_and_celebration(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> list[str]:
        await controller.start()
        return [
            await controller.flow("active"),
            await controller.flow("sprint"),
            await controller.flow(celebration="loud"),
            await controller.flow(celebration="off"),
            await controller.flow(),
            await controller.guide("done", "read the code"),
            await controller.flow("off"),
        ]

    active, bad_mode, bad_level, quiet_level, status, done, off = asyncio.run(scenario())

    assert active == "🌊 Flow mode on (active, hints at most every 15s)."
    assert bad_mode.startswith("Unknown flow mode 'sprint'")
    assert bad_level.startswith("Unknown celebration level 'loud'")
    assert quiet_level == "Celebration level set to off."
    assert status == "Flow mode is on (active); celebration level off."
    assert "✅ Recorded" not in done
    assert "Progress: 1/2 steps in this phase" in done
    assert off == "Flow mode off."

    profile = json.loads((tmp_path / PROFILE_FILENAME).read_text(encoding="utf-8"))
    assert profile["preferences"]["celebration_level"] == "off"
    assert profile["preferences"]["flow_mode_enabled"] is False


def test_status_combines_session_and_owners(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> None:
        await controller.start()
        await controller.approach("tdd")
        await controller.guide("done", "sketched the parser api")

    asyncio.run(scenario())
    status = controller.status()

    assert status["workflow"]["current_workflow"] == "tdd"
    assert status["workflow"]["phase_name"] == "Red"
    assert status["workflow"]["phase_count"] == 2
    assert status["workflow"]["phase_progress"] == {"Red": ["sketched the parser api"]}
    assert status["progress"]["total_steps"] == 1
    assert status["progress"]["next_milestone"] == "First Workflow Mastery"
    assert status["learning"]["workflows_tracked"] == 1


def test_shutdown_ends_learning_session(tmp_path: Path) -> None:
    controller = make_controller(tmp_path)

    async def scenario() -> bool:
        await controller.start()
        return await controller.shutdown()

    assert asyncio.run(scenario())
    profile = json.loads((tmp_path / PROFILE_FILENAME).read_text(encoding="utf-8"))
    assert profile["behavior_metrics"]["total_sessions"] == 1


def test_restored_naive_session_start_completes_workflow(tmp_path: Path) -> None:
    (tmp_path / STATE_FILENAME).write_text(
        json.dumps(
            {
                "workflow_id": "bug-hunt",
                "phase_index": 1,
                "phase_progress": {"Reproduce": ["reproduced the crash"]},
                "last_updated": "2025-09-01T08:30:00",
                "session_started_at": "2025-09-01T08:00:00",
            }
        ),
        encoding="utf-8",
    )
    controller = make_controller(tmp_path)

    async def scenario() -> str:
        await controller.start()
        return await controller.guide("done", "patched the null check")

    reply = asyncio.run(scenario())

    assert "🏁 **Bug Hunt complete!** 2 steps in 60 minutes." in reply
    assert controller.session.phase_index == 0
