"""Phase completion detection.

A phase is complete when any one of several signals fires. The signals are
deliberately permissive: an ambiguous "I'm done" should move the user forward
rather than block them.

1. every suggestion has a matching progress entry,
2. substantial progress plus a completion keyword in the latest note,
3. an explicit "this phase is over" phrase in the latest note,
4. a semantic match from the versioned rule table,
5. very strong completion language after at least two entries.

The semantic rules are data. They are tagged by workflow type (``None`` for
any workflow) and phase-name keywords, and can be replaced wholesale from a
YAML file without touching the decision code.
"""

from __future__ import annotations

import math
import re
from pathlib import Path
from typing import Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import WorkflowPhase

RULES_VERSION = "2025.09"

_COMPLETION_KEYWORDS = r"done|working|implemented|fixed|tested|ready"
_PHASE_CLOSURE_PHRASES = (
    r"completed.*phase",
    r"finished.*phase",
    r"done.*with.*phase",
    r"phase.*complete",
    r"ready.*next.*phase",
    r"moving.*to.*next",
)
_STRONG_COMPLETION = (
    r"fully.*done|completely.*working|everything.*implemented|everything.*working"
    r"|all.*working|all.*done|fully.*implemented|complete.*working|finished.*implementation"
)
_GENERIC_SEMANTIC = (
    r"fully.*done|completely.*working|everything.*implemented|all.*working"
    r"|finished.*implementation"
)


class CompletionRulesError(RuntimeError):
    """Raised when a completion rule table file cannot be loaded."""


class SemanticRule(BaseModel):
    """One row of the semantic completion table."""

    model_config = ConfigDict(frozen=True)

    workflow_type: str | None = Field(
        default=None, description="Workflow key this rule is scoped to; None matches any."
    )
    phase_keywords: tuple[str, ...] = Field(..., min_length=1)
    pattern: str

    @field_validator("phase_keywords", mode="before")
    @classmethod
    def _lowercase_keywords(cls, value):
        if isinstance(value, str):
            value = [value]
        return tuple(str(keyword).strip().lower() for keyword in value)

    @field_validator("pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid completion pattern {value!r}: {exc}") from exc
        return value

    def applies_to(self, workflow_type: str, phase_name: str) -> bool:
        if self.workflow_type is not None and self.workflow_type != workflow_type:
            return False
        lowered = phase_name.lower()
        return any(keyword in lowered for keyword in self.phase_keywords)

    def matches(self, text: str) -> bool:
        return re.search(self.pattern, text, re.IGNORECASE) is not None


class RuleTable(BaseModel):
    """Versioned, ordered collection of semantic rules."""

    model_config = ConfigDict(frozen=True)

    version: str
    rules: tuple[SemanticRule, ...]

    def first_applicable(self, workflow_type: str, phase_name: str) -> SemanticRule | None:
        for rule in self.rules:
            if rule.applies_to(workflow_type, phase_name):
                return rule
        return None


COMPLETION_RULES = RuleTable(
    version=RULES_VERSION,
    rules=(
        SemanticRule(
            workflow_type="bug-hunt",
            phase_keywords=("reproduce", "isolate"),
            pattern=r"reproduced|isolated|found.*bug|identified.*issue|can.*reproduce|minimal.*case",
        ),
        SemanticRule(
            workflow_type="bug-hunt",
            phase_keywords=("test", "capture"),
            pattern=r"test.*written|test.*fails|failing.*test|captured.*bug.*test|test.*reproduces",
        ),
        SemanticRule(
            workflow_type="bug-hunt",
            phase_keywords=("fix",),
            pattern=r"fixed|working|test.*passes|bug.*resolved|issue.*solved|all.*tests.*pass",
        ),
        SemanticRule(
            workflow_type="tdd",
            phase_keywords=("red", "test"),
            pattern=r"test.*written|test.*fails|failing.*test|red.*test",
        ),
        SemanticRule(
            workflow_type="tdd",
            phase_keywords=("green", "implement"),
            pattern=r"test.*passes|green|implemented|working|passing",
        ),
        SemanticRule(
            workflow_type="tdd",
            phase_keywords=("refactor",),
            pattern=r"refactored|cleaned.*up|improved|optimized|tests.*still.*pass",
        ),
        SemanticRule(
            phase_keywords=("plan", "research"),
            pattern=r"researched|planned|understood|analyzed|identified.*approach|clear.*plan",
        ),
        SemanticRule(
            phase_keywords=("implement", "build", "create"),
            pattern=r"implemented|built|created|working|complete.*implementation|functionality.*ready",
        ),
        SemanticRule(
            phase_keywords=("test", "verify"),
            pattern=r"tested|verified|tests.*pass|validated|confirmed.*working",
        ),
    ),
)


def load_rules(path: Path) -> RuleTable:
    """Load a replacement rule table from YAML.

    Expected shape::

        version: "team-2025.10"
        rules:
          - workflow_type: tdd
            phase_keywords: [red, test]
            pattern: "test.*written|test.*fails"
    """

    try:
        document = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise CompletionRulesError(f"Failed to read completion rules from {path}: {exc}") from exc

    try:
        return RuleTable.model_validate(document)
    except ValidationError as exc:
        raise CompletionRulesError(f"Completion rules in {path} are invalid: {exc}") from exc


def _search(pattern: str, text: str) -> bool:
    return re.search(pattern, text, re.IGNORECASE) is not None


class PhaseCompletionDetector:
    """Decides whether a workflow phase is complete given free-text evidence."""

    def __init__(self, rules: RuleTable = COMPLETION_RULES) -> None:
        self._rules = rules

    @property
    def rules(self) -> RuleTable:
        return self._rules

    def is_semantically_complete(
        self,
        workflow_type: str,
        phase: WorkflowPhase,
        progress_log: Sequence[str],
        latest_note: str | None = None,
    ) -> bool:
        if not latest_note or not progress_log:
            return False

        combined = " ".join([*progress_log, latest_note]).lower()
        rule = self._rules.first_applicable(workflow_type, phase.name)
        if rule is not None:
            return rule.matches(combined)

        if len(progress_log) >= 2:
            return _search(_GENERIC_SEMANTIC, combined)
        return False

    def is_phase_complete(
        self,
        workflow_type: str,
        phase: WorkflowPhase,
        progress_log: Sequence[str],
        latest_note: str | None = None,
    ) -> bool:
        count = len(progress_log)
        suggestion_count = phase.suggestion_count

        if count >= suggestion_count and (count > 0 or latest_note):
            return True

        note = latest_note or ""
        substantial = count >= max(2, math.ceil(suggestion_count * 0.6))
        if note and substantial and _search(_COMPLETION_KEYWORDS, note):
            return True

        if note and any(_search(phrase, note) for phrase in _PHASE_CLOSURE_PHRASES):
            return True

        if self.is_semantically_complete(workflow_type, phase, progress_log, latest_note):
            return True

        return bool(note) and count >= 2 and _search(_STRONG_COMPLETION, note)


_default_detector = PhaseCompletionDetector()


def is_phase_complete(
    workflow_type: str,
    phase: WorkflowPhase,
    progress_log: Sequence[str],
    latest_note: str | None = None,
) -> bool:
    """Module-level shortcut using the default rule table."""

    return _default_detector.is_phase_complete(workflow_type, phase, progress_log, latest_note)


__all__ = [
    "CompletionRulesError",
    "COMPLETION_RULES",
    "PhaseCompletionDetector",
    "RULES_VERSION",
    "RuleTable",
    "SemanticRule",
    "is_phase_complete",
    "load_rules",
]
