"""Persistence primitives and data models for Sherpa MCP."""

from .jsonfile import FaultClass, JsonFile, RetryPolicy, classify, describe_error
from .models import (
    Achievement,
    BehaviorMetrics,
    ContextPattern,
    Milestone,
    Preferences,
    ProgressStats,
    UserProfile,
    WorkflowPattern,
    WorkflowState,
)

__all__ = [
    "Achievement",
    "BehaviorMetrics",
    "ContextPattern",
    "FaultClass",
    "JsonFile",
    "Milestone",
    "Preferences",
    "ProgressStats",
    "RetryPolicy",
    "UserProfile",
    "WorkflowPattern",
    "WorkflowState",
    "classify",
    "describe_error",
]
