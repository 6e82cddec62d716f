"""Workflow definitions, completion detection and context detection."""

from .completion import (
    COMPLETION_RULES,
    RULES_VERSION,
    CompletionRulesError,
    PhaseCompletionDetector,
    RuleTable,
    SemanticRule,
    is_phase_complete,
    load_rules,
)
from .detector import DEFAULT_WORKFLOW, detect_from_context, initial_workflow, suggestion_for
from .loader import WorkflowLoadError, WorkflowLoader, load_workflows
from .models import Workflow, WorkflowPhase

__all__ = [
    "COMPLETION_RULES",
    "CompletionRulesError",
    "DEFAULT_WORKFLOW",
    "PhaseCompletionDetector",
    "RULES_VERSION",
    "RuleTable",
    "SemanticRule",
    "Workflow",
    "WorkflowLoadError",
    "WorkflowLoader",
    "WorkflowPhase",
    "detect_from_context",
    "initial_workflow",
    "is_phase_complete",
    "load_rules",
    "load_workflows",
    "suggestion_for",
]
