"""
Module: doa_kernel.selectors.task_selector
Responsibility: Read-only worklist queries over approval tasks.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Worklist ordering: incomplete first, then priority (high, medium, low),
      then newest first.
"""

from uuid import UUID

from sqlalchemy import case, select

from doa_kernel.domain.approval import PRIORITY_RANK, ApprovalTask
from doa_kernel.models.task import ApprovalTaskModel
from doa_kernel.selectors.base import BaseSelector

_PRIORITY_ORDER = case(
    {priority.value: rank for priority, rank in PRIORITY_RANK.items()},
    value=ApprovalTaskModel.priority,
    else_=len(PRIORITY_RANK) + 1,
)


class TaskSelector(BaseSelector[ApprovalTaskModel]):
    """Read access to approval tasks."""

    def get(self, company_id: str, task_id: UUID) -> ApprovalTask | None:
        stmt = select(ApprovalTaskModel).where(
            ApprovalTaskModel.id == task_id,
            ApprovalTaskModel.company_id == company_id,
        )
        model = self.session.scalars(stmt).one_or_none()
        return model.to_dto() if model is not None else None

    def for_user(
        self, company_id: str, user_id: str, include_completed: bool = False,
    ) -> tuple[ApprovalTask, ...]:
        stmt = select(ApprovalTaskModel).where(
            ApprovalTaskModel.company_id == company_id,
            ApprovalTaskModel.user_id == user_id,
        )
        if not include_completed:
            stmt = stmt.where(ApprovalTaskModel.completed.is_(False))
        stmt = stmt.order_by(
            ApprovalTaskModel.completed,
            _PRIORITY_ORDER,
            ApprovalTaskModel.created_at.desc(),
        )
        return tuple(t.to_dto() for t in self.session.scalars(stmt))

    def for_workflow(self, workflow_id: UUID) -> tuple[ApprovalTask, ...]:
        stmt = (
            select(ApprovalTaskModel)
            .where(ApprovalTaskModel.workflow_id == workflow_id)
            .order_by(ApprovalTaskModel.created_at, ApprovalTaskModel.user_id)
        )
        return tuple(t.to_dto() for t in self.session.scalars(stmt))
