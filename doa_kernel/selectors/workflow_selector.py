"""
Module: doa_kernel.selectors.workflow_selector
Responsibility: Read-only queries over approval workflows and their decision
    history.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - "Latest workflow for a document" orders by created_at descending; the
      row id breaks exact timestamp ties so the answer is deterministic.
    - Company scoping on every lookup.

Failure modes:
    - Returns None / empty tuples on absence of data.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from doa_kernel.domain.approval import (
    ApprovalWorkflow,
    Decision,
    DocumentType,
    WorkflowStatus,
)
from doa_kernel.models.workflow import ApprovalWorkflowModel
from doa_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ApprovalHistoryEntry:
    """One decision in a document's approval history."""

    workflow_id: UUID
    user_id: str
    level: int
    decision: Decision
    timestamp: datetime
    comments: str | None = None


class WorkflowSelector(BaseSelector[ApprovalWorkflowModel]):
    """Read access to approval workflows."""

    def get_model(
        self, company_id: str, workflow_id: UUID,
    ) -> ApprovalWorkflowModel | None:
        stmt = select(ApprovalWorkflowModel).where(
            ApprovalWorkflowModel.id == workflow_id,
            ApprovalWorkflowModel.company_id == company_id,
        )
        return self.session.scalars(stmt).one_or_none()

    def get(self, company_id: str, workflow_id: UUID) -> ApprovalWorkflow | None:
        model = self.get_model(company_id, workflow_id)
        return model.to_dto() if model is not None else None

    def _document_stmt(
        self, company_id: str, document_type: DocumentType, document_id: str,
    ):
        return (
            select(ApprovalWorkflowModel)
            .where(
                ApprovalWorkflowModel.company_id == company_id,
                ApprovalWorkflowModel.entity_type == DocumentType(document_type).value,
                ApprovalWorkflowModel.entity_id == document_id,
            )
            .order_by(
                ApprovalWorkflowModel.created_at.desc(),
                ApprovalWorkflowModel.id.desc(),
            )
        )

    def latest_for_document(
        self, company_id: str, document_type: DocumentType, document_id: str,
    ) -> ApprovalWorkflow | None:
        stmt = self._document_stmt(company_id, document_type, document_id).limit(1)
        model = self.session.scalars(stmt).first()
        return model.to_dto() if model is not None else None

    def pending_for_document(
        self, company_id: str, document_type: DocumentType, document_id: str,
    ) -> ApprovalWorkflow | None:
        stmt = self._document_stmt(company_id, document_type, document_id).where(
            ApprovalWorkflowModel.status == WorkflowStatus.PENDING.value,
        )
        model = self.session.scalars(stmt).first()
        return model.to_dto() if model is not None else None

    def list_for_document(
        self, company_id: str, document_type: DocumentType, document_id: str,
    ) -> tuple[ApprovalWorkflow, ...]:
        """All workflows for a document, newest first."""
        stmt = self._document_stmt(company_id, document_type, document_id)
        return tuple(m.to_dto() for m in self.session.scalars(stmt))

    def list_for_company(
        self, company_id: str, status: WorkflowStatus | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        stmt = select(ApprovalWorkflowModel).where(
            ApprovalWorkflowModel.company_id == company_id,
        )
        if status is not None:
            stmt = stmt.where(
                ApprovalWorkflowModel.status == WorkflowStatus(status).value
            )
        stmt = stmt.order_by(ApprovalWorkflowModel.created_at.desc())
        return tuple(m.to_dto() for m in self.session.scalars(stmt))

    def approval_history(
        self, company_id: str, document_type: DocumentType, document_id: str,
    ) -> tuple[ApprovalHistoryEntry, ...]:
        """Every decision across the document's workflows, oldest first."""
        entries = [
            ApprovalHistoryEntry(
                workflow_id=workflow.id,
                user_id=d.user_id,
                level=d.level,
                decision=d.decision,
                comments=d.comments,
                timestamp=d.timestamp,
            )
            for workflow in self.list_for_document(company_id, document_type, document_id)
            for d in workflow.decisions
        ]
        entries.sort(key=lambda e: e.timestamp)
        return tuple(entries)
