"""Behavioral state: progress statistics and adaptive learning."""

from .learning import (
    AdaptiveHint,
    AdaptiveLearningEngine,
    FlowState,
    LearningSession,
    PredictiveContext,
)
from .progress import ProgressTracker, milestone_catalog

__all__ = [
    "AdaptiveHint",
    "AdaptiveLearningEngine",
    "FlowState",
    "LearningSession",
    "PredictiveContext",
    "ProgressTracker",
    "milestone_catalog",
]
