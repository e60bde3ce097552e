"""Selectors for the approval engine (read side)."""

from doa_kernel.selectors.matrix_selector import MatrixSelector
from doa_kernel.selectors.task_selector import TaskSelector
from doa_kernel.selectors.workflow_selector import ApprovalHistoryEntry, WorkflowSelector

__all__ = [
    "ApprovalHistoryEntry",
    "MatrixSelector",
    "TaskSelector",
    "WorkflowSelector",
]
