"""
TaskProjector -- derives worklist tasks from workflow state.

Responsibility:
    Sole writer of ``ApprovalTask`` rows.  Opens one ``approval_request``
    task per approver when a level opens, one ``approval_response`` task
    for the initiator at submission, completes tasks as approvers act,
    rewrites the initiator task into a terminal notification, and creates
    matrix review tasks for a newly initialized company.

Architecture position:
    Kernel > Services.  Called by WorkflowService and MatrixService inside
    the facade's transaction.

Invariants enforced:
    - Deterministic ids: every task id is a UUIDv5 of its workflow, level
      and user (or company and matrix for review tasks).  Creating a task
      that already exists returns the existing row untouched, so
      projection can be re-run from persisted state without duplicates.
    - Completion is monotonic: a completed task is never reopened and its
      ``completed_at`` is never overwritten.

Failure modes:
    - WriteConflictError when a concurrent transaction inserted or updated
      the same task first.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import NAMESPACE_URL, UUID, uuid5

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from doa_config.schema import TaskSettings
from doa_engines import find_block, is_level_complete
from doa_kernel.domain.approval import (
    ApprovalBlock,
    ApprovalMatrix,
    ApprovalTask,
    ApprovalWorkflow,
    TaskType,
    WorkflowStatus,
    document_type_name,
)
from doa_kernel.domain.clock import Clock, SystemClock
from doa_kernel.exceptions import TaskNotFoundError, WriteConflictError
from doa_kernel.logging_config import get_logger
from doa_kernel.models.task import ApprovalTaskModel
from doa_kernel.services.base import BaseService

logger = get_logger("services.task_projector")

TASK_NAMESPACE = uuid5(NAMESPACE_URL, "urn:doa-kernel:approval-task")

MATRIX_ENTITY_TYPE = "approval_matrix"


def approver_task_id(workflow_id: UUID, level: int, user_id: str) -> UUID:
    return uuid5(TASK_NAMESPACE, f"{workflow_id}:level:{level}:{user_id}")


def initiator_task_id(workflow_id: UUID) -> UUID:
    return uuid5(TASK_NAMESPACE, f"{workflow_id}:initiator")


def review_task_id(company_id: str, matrix_id: UUID) -> UUID:
    return uuid5(TASK_NAMESPACE, f"{company_id}:review:{matrix_id}")


class TaskProjector(BaseService[ApprovalTaskModel]):
    """Creates and updates approval tasks as a side effect of transitions."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: TaskSettings | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._settings = settings or TaskSettings()

    # -----------------------------------------------------------------
    # Low-level helpers
    # -----------------------------------------------------------------

    def _ensure(self, task_id: UUID, **fields) -> tuple[ApprovalTaskModel, bool]:
        """Return the task with ``task_id``, creating it if missing."""
        existing = self.session.get(ApprovalTaskModel, task_id)
        if existing is not None:
            return existing, False
        now = self._clock.now()
        model = ApprovalTaskModel(
            id=task_id,
            completed=False,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.session.add(model)
        return model, True

    def _mark_completed(self, model: ApprovalTaskModel) -> bool:
        if model.completed:
            return False
        now = self._clock.now()
        model.completed = True
        model.completed_at = now
        model.updated_at = now
        return True

    @staticmethod
    def _terminal_title(workflow: ApprovalWorkflow) -> str:
        outcome = "Declined" if workflow.status == WorkflowStatus.DECLINED else "Approved"
        type_name = document_type_name(workflow.entity_type)
        return f"{type_name} {outcome} - {workflow.document_title}"

    def _flush_tasks(self) -> None:
        try:
            self.session.flush()
        except (StaleDataError, IntegrityError) as exc:
            raise WriteConflictError("ApprovalTask", "projection") from exc

    # -----------------------------------------------------------------
    # Projection steps
    # -----------------------------------------------------------------

    def open_initiator_task(self, workflow: ApprovalWorkflow) -> tuple[ApprovalTask, ...]:
        """Create the initiator's pending notification."""
        type_name = document_type_name(workflow.entity_type)
        model, created = self._ensure(
            initiator_task_id(workflow.id),
            company_id=workflow.company_id,
            task_type=TaskType.APPROVAL_RESPONSE.value,
            user_id=workflow.initiator_id,
            workflow_id=workflow.id,
            entity_type=workflow.entity_type.value,
            entity_id=workflow.entity_id,
            level=None,
            title=f"{type_name} Approval Pending - {workflow.document_title}",
            description=(
                f'Your {type_name.lower()} "{workflow.document_title}" has been '
                "submitted for approval and is pending review."
            ),
            priority=self._settings.initiator_priority.value,
        )
        self._flush_tasks()
        return (model.to_dto(),) if created else ()

    def open_level(
        self, workflow: ApprovalWorkflow, block: ApprovalBlock,
    ) -> tuple[ApprovalTask, ...]:
        """Create one approval_request task per approver of ``block``.

        Returns only the tasks created by this call.
        """
        type_name = document_type_name(workflow.entity_type)
        created_models = []
        for approver in block.approvers:
            model, created = self._ensure(
                approver_task_id(workflow.id, block.level, approver.value),
                company_id=workflow.company_id,
                task_type=TaskType.APPROVAL_REQUEST.value,
                user_id=approver.value,
                workflow_id=workflow.id,
                entity_type=workflow.entity_type.value,
                entity_id=workflow.entity_id,
                level=block.level,
                title=f"Approve {type_name} - {workflow.document_title}",
                description=(
                    f'Please review and approve the {type_name.lower()} '
                    f'"{workflow.document_title}" (approval level {block.level}).'
                ),
                priority=self._settings.approver_priority.value,
            )
            if created:
                created_models.append(model)
        self._flush_tasks()

        tasks = tuple(m.to_dto() for m in created_models)
        if tasks:
            logger.info(
                "tasks_projected",
                extra={
                    "workflow_id": str(workflow.id),
                    "approval_level": block.level,
                    "task_count": len(tasks),
                },
            )
        return tasks

    def complete_level(
        self,
        workflow: ApprovalWorkflow,
        block: ApprovalBlock,
        user_id: str | None = None,
    ) -> int:
        """Complete level tasks for every approver, or only ``user_id``.

        Returns the number of tasks newly completed.
        """
        targets = [user_id] if user_id is not None else list(block.approver_ids)
        completed = 0
        for target in targets:
            model = self.session.get(
                ApprovalTaskModel, approver_task_id(workflow.id, block.level, target)
            )
            if model is not None and self._mark_completed(model):
                completed += 1
        self._flush_tasks()
        return completed

    def resolve_initiator_task(
        self, workflow: ApprovalWorkflow, comments: str | None = None,
    ) -> ApprovalTask:
        """Rewrite the initiator task into a terminal notification.

        The task stays open until the initiator acknowledges it.
        """
        model, _ = self._ensure(
            initiator_task_id(workflow.id),
            company_id=workflow.company_id,
            task_type=TaskType.APPROVAL_RESPONSE.value,
            user_id=workflow.initiator_id,
            workflow_id=workflow.id,
            entity_type=workflow.entity_type.value,
            entity_id=workflow.entity_id,
            title="",
            description="",
            priority=self._settings.initiator_priority.value,
        )
        type_name = document_type_name(workflow.entity_type)
        title = workflow.document_title
        model.title = self._terminal_title(workflow)
        if workflow.status == WorkflowStatus.DECLINED:
            model.description = (
                f'Your {type_name.lower()} "{title}" has been declined.'
                f"\n\nComments: {comments}"
            )
            model.priority = self._settings.declined_priority.value
        else:
            model.description = f'Your {type_name.lower()} "{title}" has been approved.'
            if comments:
                model.description += f"\n\nComments: {comments}"
        model.task_type = TaskType.APPROVAL_RESPONSE.value
        model.completed = False
        model.completed_at = None
        model.updated_at = self._clock.now()
        self._flush_tasks()
        return model.to_dto()

    def open_review_task(
        self, matrix: ApprovalMatrix, owner_id: str,
    ) -> tuple[ApprovalTask, ...]:
        """Ask the company owner to review a seeded matrix."""
        type_name = document_type_name(matrix.document_type)
        model, created = self._ensure(
            review_task_id(matrix.company_id, matrix.id),
            company_id=matrix.company_id,
            task_type=TaskType.REVIEW_DOA_MATRIX.value,
            user_id=owner_id,
            workflow_id=None,
            entity_type=MATRIX_ENTITY_TYPE,
            entity_id=str(matrix.id),
            level=None,
            title=f"Review DoA Matrix: {type_name}",
            description=(
                "Please review and approve the Delegation of Authority matrix "
                f"for {type_name}. This defines who needs to approve "
                f"{type_name.lower()} documents in your organization."
            ),
            priority=self._settings.review_priority.value,
            deadline=self._clock.now() + timedelta(days=self._settings.review_deadline_days),
        )
        self._flush_tasks()
        return (model.to_dto(),) if created else ()

    def complete_task(self, company_id: str, task_id: UUID) -> ApprovalTask:
        """Acknowledge a task.  Completing a completed task is a no-op."""
        model = self.session.get(ApprovalTaskModel, task_id)
        if model is None or model.company_id != company_id:
            raise TaskNotFoundError(str(task_id))
        if self._mark_completed(model):
            self._flush("ApprovalTask", task_id)
            logger.info("task_completed", extra={"task_id": str(task_id)})
        return model.to_dto()

    # -----------------------------------------------------------------
    # Recovery
    # -----------------------------------------------------------------

    def reproject(
        self,
        workflow: ApprovalWorkflow,
        blocks: tuple[ApprovalBlock, ...],
    ) -> tuple[ApprovalTask, ...]:
        """Rebuild the expected task set from persisted workflow state.

        Creates missing tasks and completes tasks that should be complete.
        Returns the tasks created by this call.
        """
        created: list[ApprovalTask] = list(self.open_initiator_task(workflow))
        decided = {(d.user_id, d.level) for d in workflow.decisions}

        for level in range(1, workflow.current_level + 1):
            block = find_block(blocks, level)
            if block is None:
                continue
            created.extend(self.open_level(workflow, block))
            level_closed = (
                level < workflow.current_level
                or not workflow.is_pending
                or is_level_complete(block, workflow.decisions)
            )
            if level_closed:
                self.complete_level(workflow, block)
            else:
                for user_id in block.approver_ids:
                    if (user_id, level) in decided:
                        self.complete_level(workflow, block, user_id=user_id)

        if not workflow.is_pending:
            initiator = self.session.get(
                ApprovalTaskModel, initiator_task_id(workflow.id)
            )
            if initiator is not None and initiator.title != self._terminal_title(workflow):
                comments = workflow.decisions[-1].comments if workflow.decisions else None
                self.resolve_initiator_task(workflow, comments)

        logger.info(
            "tasks_reprojected",
            extra={"workflow_id": str(workflow.id), "task_count": len(created)},
        )
        return tuple(created)
