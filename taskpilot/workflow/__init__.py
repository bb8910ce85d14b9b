from .manager import WorkflowManager
from .types import UnknownWorkflowError, WorkflowReport, WorkflowState, WorkflowSummary

__all__ = [
    "WorkflowManager",
    "UnknownWorkflowError",
    "WorkflowReport",
    "WorkflowState",
    "WorkflowSummary",
]
