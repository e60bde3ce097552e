"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable.  Time comes from an injected Clock.
"""

from doa_kernel.domain.approval import (
    DOCUMENT_TYPE_NAMES,
    PRIORITY_RANK,
    TERMINAL_WORKFLOW_STATUSES,
    WORKFLOW_TRANSITIONS,
    ApprovalBlock,
    ApprovalDecision,
    ApprovalMatrix,
    ApprovalResult,
    ApprovalTask,
    ApprovalWorkflow,
    Approver,
    ApproverType,
    Decision,
    DocumentRef,
    DocumentType,
    MatrixStatus,
    SubmissionResult,
    TaskPriority,
    TaskType,
    WorkflowStatus,
    document_type_name,
    normalize_approver,
    parse_block,
)
from doa_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from doa_kernel.domain.directory import (
    CompanyDirectory,
    InMemoryCompanyDirectory,
    resolve_owner_id,
)

__all__ = [
    "ApprovalBlock",
    "ApprovalDecision",
    "ApprovalMatrix",
    "ApprovalResult",
    "ApprovalTask",
    "ApprovalWorkflow",
    "Approver",
    "ApproverType",
    "Clock",
    "CompanyDirectory",
    "DOCUMENT_TYPE_NAMES",
    "Decision",
    "DeterministicClock",
    "DocumentRef",
    "DocumentType",
    "InMemoryCompanyDirectory",
    "MatrixStatus",
    "PRIORITY_RANK",
    "SubmissionResult",
    "SystemClock",
    "TERMINAL_WORKFLOW_STATUSES",
    "TaskPriority",
    "TaskType",
    "WORKFLOW_TRANSITIONS",
    "WorkflowStatus",
    "document_type_name",
    "normalize_approver",
    "parse_block",
    "resolve_owner_id",
]
