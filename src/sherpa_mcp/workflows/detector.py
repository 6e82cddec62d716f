"""Context keyword heuristics for choosing a workflow."""

from __future__ import annotations

from typing import Mapping

from .models import Workflow

# Checked in order; the first list with a hit wins.
_CONTEXT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "bug-hunt",
        (
            "bug", "error", "issue", "problem", "broken", "not working", "failing",
            "crash", "exception", "debug", "troubleshoot", "investigate", "reproduce", "fix",
        ),
    ),
    (
        "rapid",
        ("prototype", "quick", "demo", "poc", "proof of concept", "experiment", "try", "spike", "explore"),
    ),
    (
        "refactor",
        (
            "refactor", "clean up", "improve", "optimize", "restructure",
            "organize", "simplify", "modernize", "upgrade",
        ),
    ),
    (
        "tdd",
        (
            "new feature", "implement", "add function", "create", "build",
            "test", "tdd", "test-driven", "spec", "requirement",
        ),
    ),
)

_SWITCH_REASONS = {
    "bug-hunt": "I detected you're working on a bug or issue",
    "tdd": "I detected you're building a new feature",
    "rapid": "I detected you want to prototype quickly",
    "refactor": "I detected you're improving existing code",
}

DEFAULT_WORKFLOW = "general"


def detect_from_context(
    context: str | None, available: Mapping[str, Workflow], current: str
) -> str:
    """Return the workflow key suggested by ``context``.

    Only keys present in ``available`` are returned; otherwise ``current``.
    """

    if not context:
        return current

    lowered = context.lower()
    for key, keywords in _CONTEXT_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return key if key in available else current
    return current


def suggestion_for(detected: str, current: str, workflows: Mapping[str, Workflow]) -> str:
    """One-line switch suggestion, or an empty string when nothing changes."""

    if detected == current:
        return ""
    workflow = workflows.get(detected)
    if workflow is None:
        return ""
    reason = _SWITCH_REASONS.get(detected, "Based on your context")
    return f"💡 {reason}. Consider switching to **{workflow.name}** workflow for optimal results."


def initial_workflow(available: Mapping[str, Workflow]) -> str:
    if DEFAULT_WORKFLOW in available:
        return DEFAULT_WORKFLOW
    return next(iter(available), DEFAULT_WORKFLOW)


__all__ = ["DEFAULT_WORKFLOW", "detect_from_context", "initial_workflow", "suggestion_for"]
