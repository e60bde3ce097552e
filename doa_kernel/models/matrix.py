"""
Module: doa_kernel.models.matrix
Responsibility: ORM persistence for company-scoped approval matrices.

Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Status is limited to draft/active/archived by a check constraint.
    - Approval blocks are stored as a JSON list of normalized blocks; the
      column is reassigned (never mutated in place) so every change bumps
      ``version``.
    - Optimistic concurrency: ``version`` is SQLAlchemy's version_id_col.

Failure modes:
    - StaleDataError on flush when another transaction updated the row
      first (translated to WriteConflictError by the services).
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from doa_kernel.db.base import TrackedBase
from doa_kernel.db.types import as_utc

if TYPE_CHECKING:
    from doa_kernel.domain.approval import ApprovalMatrix


class ApprovalMatrixModel(TrackedBase):
    """Persistent approval matrix.

    Contract:
        Lookup-time assumption: one active matrix per (company, document
        type, amount range).  Not enforced at write time.
    """

    __tablename__ = "approval_matrices"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'active', 'archived')",
            name="ck_approval_matrices_valid_status",
        ),
        Index(
            "ix_approval_matrices_company_type_status",
            "company_id", "document_type", "status",
        ),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    approval_blocks: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    min_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalMatrix {self.id} {self.company_id}/{self.document_type} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalMatrix:
        """Convert ORM model to frozen domain DTO."""
        from doa_kernel.domain.approval import (
            ApprovalMatrix,
            DocumentType,
            MatrixStatus,
            parse_block,
        )

        return ApprovalMatrix(
            id=self.id,
            company_id=self.company_id,
            name=self.name,
            description=self.description,
            document_type=DocumentType(self.document_type),
            status=MatrixStatus(self.status),
            approval_blocks=tuple(
                sorted(
                    (parse_block(b) for b in self.approval_blocks or ()),
                    key=lambda b: b.level,
                )
            ),
            created_by=self.created_by,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            min_amount=self.min_amount,
            max_amount=self.max_amount,
            currency=self.currency,
            version=self.version,
        )
