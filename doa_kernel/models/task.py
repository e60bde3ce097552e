"""
Module: doa_kernel.models.task
Responsibility: ORM persistence for approval worklist tasks.

Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Task ids are assigned by the projector (deterministic UUIDv5), so the
      primary key doubles as the idempotency key for projection.
    - Optimistic concurrency: ``version`` is SQLAlchemy's version_id_col.

Failure modes:
    - IntegrityError if two transactions insert the same task id.
    - StaleDataError on a concurrent update of the same task.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from doa_kernel.db.base import TrackedBase, UUIDString
from doa_kernel.db.types import as_utc

if TYPE_CHECKING:
    from doa_kernel.domain.approval import ApprovalTask


class ApprovalTaskModel(TrackedBase):
    """Persistent worklist entry."""

    __tablename__ = "approval_tasks"

    __table_args__ = (
        CheckConstraint(
            "priority IN ('low', 'medium', 'high')",
            name="ck_approval_tasks_valid_priority",
        ),
        Index(
            "ix_approval_tasks_user_worklist",
            "company_id", "user_id", "completed",
        ),
        Index("ix_approval_tasks_workflow", "workflow_id"),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    workflow_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    level: Mapped[int | None] = mapped_column(nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(String(4000), nullable=False, default="")
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default="medium")
    completed: Mapped[bool] = mapped_column(nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        state = "done" if self.completed else "open"
        return f"<ApprovalTask {self.id} {self.task_type} user={self.user_id} {state}>"

    def to_dto(self) -> ApprovalTask:
        """Convert ORM model to frozen domain DTO."""
        from doa_kernel.domain.approval import ApprovalTask, TaskPriority, TaskType

        return ApprovalTask(
            id=self.id,
            company_id=self.company_id,
            task_type=TaskType(self.task_type),
            user_id=self.user_id,
            workflow_id=self.workflow_id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            level=self.level,
            title=self.title,
            description=self.description,
            priority=TaskPriority(self.priority),
            completed=self.completed,
            completed_at=as_utc(self.completed_at),
            deadline=as_utc(self.deadline),
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            version=self.version,
        )
