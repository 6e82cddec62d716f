from pathlib import Path
import textwrap

import pytest

from sherpa_mcp.workflows import (
    COMPLETION_RULES,
    CompletionRulesError,
    PhaseCompletionDetector,
    WorkflowPhase,
    is_phase_complete,
    load_rules,
)


def phase(name: str = "Test Phase", count: int = 3) -> WorkflowPhase:
    return WorkflowPhase(name=name, suggestions=[f"step {i}" for i in range(count)])


def test_substantial_progress_with_keyword_completes() -> None:
    assert is_phase_complete("general", phase(count=3), ["step1", "step2"], "implementation working")


def test_count_rule_completes_without_note() -> None:
    assert is_phase_complete("general", phase(count=2), ["a", "b"])


@pytest.mark.parametrize(
    "note",
    [
        "completed the phase",
        "finished this phase",
        "done with this phase",
        "phase is complete",
        "ready for next phase",
        "moving to next step",
    ],
)
def test_explicit_phase_closure_ignores_count(note: str) -> None:
    assert is_phase_complete("tdd", phase(count=5), ["step1"], note)


def test_tdd_red_phase_semantic_match() -> None:
    red = WorkflowPhase(name="🔴 Red Phase", suggestions=["write test", "see failure"])
    assert is_phase_complete("tdd", red, ["wrote test"], "test fails as expected")


def test_tdd_green_and_refactor_phases() -> None:
    green = WorkflowPhase(name="🟢 Green Phase", suggestions=["a", "b", "c"])
    refactor = WorkflowPhase(name="Refactor", suggestions=["a", "b", "c"])

    assert is_phase_complete("tdd", green, ["wrote code"], "test passes now")
    assert is_phase_complete("tdd", refactor, ["renamed"], "refactored the helpers")
    assert not is_phase_complete("tdd", refactor, ["renamed"], "still thinking")


def test_bug_hunt_rules_are_scoped_to_workflow() -> None:
    reproduce = WorkflowPhase(name="Reproduce & Isolate", suggestions=["a", "b", "c"])

    assert is_phase_complete("bug-hunt", reproduce, ["tried inputs"], "can reproduce with a minimal case")
    # Outside bug-hunt no rule matches the phase name.
    assert not is_phase_complete("general", reproduce, ["tried inputs"], "can reproduce it")


def test_general_rules_apply_to_any_workflow() -> None:
    planning = WorkflowPhase(name="Research & Plan", suggestions=["a", "b", "c"])
    assert is_phase_complete("rapid", planning, ["read docs"], "clear plan now")


@pytest.mark.parametrize(
    "note", ["all done", "everything working", "fully implemented", "complete working", "done", "working"]
)
def test_natural_completion_after_two_entries(note: str) -> None:
    assert is_phase_complete("tdd", phase(count=3), ["step1", "step2"], note)


def test_weak_language_does_not_complete() -> None:
    assert not is_phase_complete("tdd", phase(count=3), ["step1"], "some work done")
    assert not is_phase_complete("tdd", phase(count=3), ["step1"], "started working on it")


def test_strong_language_needs_two_entries() -> None:
    neutral = phase(name="Polish", count=4)
    assert not is_phase_complete("general", neutral, ["one"], "everything implemented and working")
    assert is_phase_complete("general", neutral, ["one", "two"], "everything implemented and working")


def test_edge_cases_are_not_complete() -> None:
    assert not is_phase_complete("tdd", phase(), [], None)
    assert not is_phase_complete("tdd", phase(), ["step1"], None)
    assert not is_phase_complete("tdd", phase(), ["step1"], "")


@pytest.mark.parametrize("workflow_type", ["tdd", "bug-hunt", "general", "rapid", "refactor"])
def test_count_rule_is_workflow_independent(workflow_type: str) -> None:
    assert is_phase_complete(workflow_type, phase(count=3), ["step1", "step2", "step3"], "completed")


def test_matching_is_case_insensitive() -> None:
    assert is_phase_complete("tdd", phase(count=5), ["step1"], "COMPLETED THE PHASE")


def test_semantic_requires_note_and_log() -> None:
    detector = PhaseCompletionDetector()
    red = WorkflowPhase(name="Red", suggestions=["a", "b", "c"])
    assert not detector.is_semantically_complete("tdd", red, [], "test fails")
    assert not detector.is_semantically_complete("tdd", red, ["test written"], None)


def test_default_table_is_versioned() -> None:
    assert COMPLETION_RULES.version
    assert COMPLETION_RULES.rules[0].workflow_type == "bug-hunt"


def test_custom_rules_from_yaml(tmp_path: Path) -> None:
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text(
        textwrap.dedent(
            """
            version: team-1
            rules:
              - workflow_type: tdd
                phase_keywords: [red]
                pattern: "assertion.*added"
            """
        ).strip(),
        encoding="utf-8",
    )

    table = load_rules(rules_file)
    detector = PhaseCompletionDetector(table)
    red = WorkflowPhase(name="Red", suggestions=["a", "b", "c"])

    assert table.version == "team-1"
    assert detector.is_phase_complete("tdd", red, ["x"], "assertion was added")
    assert not detector.is_phase_complete("tdd", red, ["x"], "test fails")


def test_invalid_rule_file_raises(tmp_path: Path) -> None:
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text("version: x\nrules:\n  - phase_keywords: [red]\n    pattern: '('\n", encoding="utf-8")

    with pytest.raises(CompletionRulesError):
        load_rules(rules_file)
