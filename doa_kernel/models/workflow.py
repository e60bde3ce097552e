"""
Module: doa_kernel.models.workflow
Responsibility: ORM persistence for approval workflows and their decisions.

Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Status is limited to pending/approved/declined by a check constraint.
    - Decisions live on the workflow row as an ordered JSON list so the
      aggregate is versioned as one record.  The service reassigns the
      list on every append.
    - ``matrix_id`` is a foreign key snapshotted at submission.
    - At most one pending workflow per (company, document type, document id),
      enforced by a partial unique index.
    - Optimistic concurrency: ``version`` is SQLAlchemy's version_id_col.
      Two approvers completing the same level cannot both commit.

Failure modes:
    - IntegrityError on flush when a second pending workflow is inserted for
      the same document.
    - StaleDataError on flush when a concurrent transaction committed a
      newer version of the workflow.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from doa_kernel.db.base import TrackedBase, UUIDString
from doa_kernel.db.types import as_utc

if TYPE_CHECKING:
    from doa_kernel.domain.approval import ApprovalWorkflow


class ApprovalWorkflowModel(TrackedBase):
    """Persistent approval workflow.

    Contract:
        Once status leaves ``pending``, ``current_level`` and
        ``decisions`` are never written again (enforced by the service).
    """

    __tablename__ = "approval_workflows"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'declined')",
            name="ck_approval_workflows_valid_status",
        ),
        CheckConstraint(
            "current_level >= 1",
            name="ck_approval_workflows_level_positive",
        ),
        # Latest-workflow-for-document lookups
        Index(
            "ix_approval_workflows_document",
            "company_id", "entity_type", "entity_id", "created_at",
        ),
        Index(
            "ix_approval_workflows_company_status",
            "company_id", "status",
        ),
        # One pending workflow per document
        Index(
            "uq_approval_workflows_one_pending",
            "company_id", "entity_type", "entity_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    document_title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    document_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    current_level: Mapped[int] = mapped_column(nullable=False, default=1)
    matrix_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_matrices.id"), nullable=False,
    )
    initiator_id: Mapped[str] = mapped_column(String(100), nullable=False)
    decisions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalWorkflow {self.id} {self.entity_type}/{self.entity_id} "
            f"status={self.status} level={self.current_level} v{self.version}>"
        )

    def to_dto(self) -> ApprovalWorkflow:
        """Convert ORM model to frozen domain DTO."""
        from doa_kernel.domain.approval import (
            ApprovalDecision,
            ApprovalWorkflow,
            DocumentType,
            WorkflowStatus,
        )

        return ApprovalWorkflow(
            id=self.id,
            company_id=self.company_id,
            entity_type=DocumentType(self.entity_type),
            entity_id=self.entity_id,
            document_title=self.document_title,
            document_amount=self.document_amount,
            status=WorkflowStatus(self.status),
            current_level=self.current_level,
            matrix_id=self.matrix_id,
            initiator_id=self.initiator_id,
            decisions=tuple(
                ApprovalDecision.from_dict(d) for d in self.decisions or ()
            ),
            submitted_at=as_utc(self.submitted_at),
            completed_at=as_utc(self.completed_at),
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            version=self.version,
        )
