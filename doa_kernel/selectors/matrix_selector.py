"""
Module: doa_kernel.selectors.matrix_selector
Responsibility: Read-only queries over approval matrices.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Company scoping: every lookup filters on company_id; a matrix id from
      another company is reported as absent.
    - ``list_for_company`` orders by document type, then newest first.
"""

from uuid import UUID

from sqlalchemy import func, select

from doa_kernel.domain.approval import (
    ApprovalMatrix,
    DocumentType,
    MatrixStatus,
    WorkflowStatus,
)
from doa_kernel.models.matrix import ApprovalMatrixModel
from doa_kernel.models.workflow import ApprovalWorkflowModel
from doa_kernel.selectors.base import BaseSelector


class MatrixSelector(BaseSelector[ApprovalMatrixModel]):
    """Read access to approval matrices."""

    def get_model(self, company_id: str, matrix_id: UUID) -> ApprovalMatrixModel | None:
        stmt = select(ApprovalMatrixModel).where(
            ApprovalMatrixModel.id == matrix_id,
            ApprovalMatrixModel.company_id == company_id,
        )
        return self.session.scalars(stmt).one_or_none()

    def get(self, company_id: str, matrix_id: UUID) -> ApprovalMatrix | None:
        model = self.get_model(company_id, matrix_id)
        return model.to_dto() if model is not None else None

    def active_candidates(
        self, company_id: str, document_type: DocumentType,
    ) -> tuple[ApprovalMatrix, ...]:
        """All active matrices for (company, document type), newest first."""
        stmt = (
            select(ApprovalMatrixModel)
            .where(
                ApprovalMatrixModel.company_id == company_id,
                ApprovalMatrixModel.document_type == DocumentType(document_type).value,
                ApprovalMatrixModel.status == MatrixStatus.ACTIVE.value,
            )
            .order_by(ApprovalMatrixModel.created_at.desc())
        )
        return tuple(m.to_dto() for m in self.session.scalars(stmt))

    def list_for_company(
        self,
        company_id: str,
        document_type: DocumentType | None = None,
        status: MatrixStatus | None = None,
    ) -> tuple[ApprovalMatrix, ...]:
        stmt = select(ApprovalMatrixModel).where(
            ApprovalMatrixModel.company_id == company_id,
        )
        if document_type is not None:
            stmt = stmt.where(
                ApprovalMatrixModel.document_type == DocumentType(document_type).value
            )
        if status is not None:
            stmt = stmt.where(ApprovalMatrixModel.status == MatrixStatus(status).value)
        stmt = stmt.order_by(
            ApprovalMatrixModel.document_type,
            ApprovalMatrixModel.created_at.desc(),
        )
        return tuple(m.to_dto() for m in self.session.scalars(stmt))

    def workflow_count(
        self, matrix_id: UUID, status: WorkflowStatus | None = None,
    ) -> int:
        """Number of workflows that reference ``matrix_id``, optionally by status."""
        stmt = select(func.count()).select_from(ApprovalWorkflowModel).where(
            ApprovalWorkflowModel.matrix_id == matrix_id,
        )
        if status is not None:
            stmt = stmt.where(
                ApprovalWorkflowModel.status == WorkflowStatus(status).value
            )
        return self.session.scalar(stmt) or 0
