"""ORM models for the approval engine."""

from doa_kernel.models.matrix import ApprovalMatrixModel
from doa_kernel.models.task import ApprovalTaskModel
from doa_kernel.models.workflow import ApprovalWorkflowModel

__all__ = [
    "ApprovalMatrixModel",
    "ApprovalTaskModel",
    "ApprovalWorkflowModel",
]
