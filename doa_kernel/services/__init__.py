"""Kernel services (write side) and the approval facade."""

from doa_kernel.services.approval_service import ApprovalService
from doa_kernel.services.matrix_service import CompanyInitialization, MatrixService
from doa_kernel.services.task_projector import (
    TaskProjector,
    approver_task_id,
    initiator_task_id,
    review_task_id,
)
from doa_kernel.services.workflow_service import WorkflowService

__all__ = [
    "ApprovalService",
    "CompanyInitialization",
    "MatrixService",
    "TaskProjector",
    "WorkflowService",
    "approver_task_id",
    "initiator_task_id",
    "review_task_id",
]
