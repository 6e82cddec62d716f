"""Workflow position persistence and cross-owner coordination."""

from .coordinator import LoadResult, SaveResult, StateCoordinator
from .workflow_state import WorkflowStateManager

__all__ = ["LoadResult", "SaveResult", "StateCoordinator", "WorkflowStateManager"]
