"""
doa_kernel.services.workflow_service -- Approval workflow state machine.

Responsibility:
    Owns ``ApprovalWorkflow`` and ``ApprovalDecision`` creation and
    mutation: submission, per-level decision recording, level completion,
    level advancement and terminal resolution.  Delegates rule evaluation
    to the pure ``doa_engines`` functions and task side effects to the
    ``TaskProjector``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and doa_engines.

Invariants enforced:
    - Lifecycle: ``WORKFLOW_TRANSITIONS`` is checked before every status
      change; terminal workflows are never written again.
    - Exactly-once decision per (user, level): ``AlreadyDecidedError``
      guards both approve and decline.
    - Snapshot routing: decisions are evaluated against the matrix the
      workflow was submitted under, never the currently active one.
    - The workflow row is flushed (version-checked) before any task
      projection for the same transition.
    - One pending workflow per document at a time: checked before insert
      and backed by a partial unique index for concurrent submissions.

Failure modes:
    - WorkflowNotFoundError, WorkflowNotPendingError, MatrixNotFoundError,
      InvalidApprovalLevelError, NotAuthorizedAtLevelError,
      AlreadyDecidedError, CommentsRequiredError, EmptyMatrixError,
      WorkflowAlreadyPendingError.
    - WriteConflictError when a concurrent transaction committed a newer
      version of the workflow.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from doa_engines import (
    find_block,
    has_decided,
    is_authorized,
    is_level_complete,
    next_block,
)
from doa_kernel.domain.approval import (
    TERMINAL_WORKFLOW_STATUSES,
    WORKFLOW_TRANSITIONS,
    ApprovalBlock,
    ApprovalDecision,
    ApprovalMatrix,
    ApprovalResult,
    ApprovalTask,
    ApprovalWorkflow,
    Decision,
    DocumentRef,
    SubmissionResult,
    WorkflowStatus,
)
from doa_kernel.domain.clock import Clock, SystemClock
from doa_kernel.exceptions import (
    AlreadyDecidedError,
    CommentsRequiredError,
    EmptyMatrixError,
    InvalidApprovalLevelError,
    InvalidMatrixError,
    MatrixNotFoundError,
    NotAuthorizedAtLevelError,
    WorkflowAlreadyPendingError,
    WorkflowNotFoundError,
    WorkflowNotPendingError,
)
from doa_kernel.logging_config import get_logger
from doa_kernel.models.workflow import ApprovalWorkflowModel
from doa_kernel.selectors.workflow_selector import WorkflowSelector
from doa_kernel.services.base import BaseService
from doa_kernel.services.matrix_service import MatrixService
from doa_kernel.services.task_projector import TaskProjector

logger = get_logger("services.workflow_service")


class WorkflowService(BaseService[ApprovalWorkflowModel]):
    """Drives approval workflows through their lifecycle."""

    def __init__(
        self,
        session: Session,
        matrices: MatrixService,
        projector: TaskProjector,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._matrices = matrices
        self._projector = projector
        self._clock = clock or SystemClock()
        self._selector = WorkflowSelector(session)

    # -----------------------------------------------------------------
    # Submission
    # -----------------------------------------------------------------

    def submit(
        self, company_id: str, document: DocumentRef, initiator_id: str,
    ) -> SubmissionResult:
        """Open a workflow for ``document`` at level 1.

        Creates the initiator's pending task and one approval_request task
        per level-1 approver.
        """
        if not company_id or not company_id.strip():
            raise ValueError("company_id must not be empty")
        if not initiator_id or not initiator_id.strip():
            raise ValueError("initiator_id must not be empty")

        pending = self._selector.pending_for_document(
            company_id, document.type, document.id,
        )
        if pending is not None:
            raise WorkflowAlreadyPendingError(
                document.type.value, document.id, str(pending.id),
            )

        matrix = self._matrices.resolve_matrix(company_id, document.type, document.amount)
        if not matrix.approval_blocks:
            raise EmptyMatrixError(str(matrix.id))
        first_block = find_block(matrix.approval_blocks, 1)
        if first_block is None:
            raise InvalidMatrixError("matrix has no level 1 block", str(matrix.id))

        now = self._clock.now()
        model = ApprovalWorkflowModel(
            id=uuid4(),
            company_id=company_id,
            entity_type=document.type.value,
            entity_id=document.id,
            document_title=document.title,
            document_amount=document.amount,
            status=WorkflowStatus.PENDING.value,
            current_level=1,
            matrix_id=matrix.id,
            initiator_id=initiator_id,
            decisions=[],
            submitted_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        try:
            self._flush("ApprovalWorkflow", model.id)
        except IntegrityError as exc:
            # A concurrent submission committed its pending workflow first
            logger.warning(
                "duplicate_pending_submission",
                extra={
                    "entity_type": document.type.value,
                    "entity_id": document.id,
                },
            )
            raise WorkflowAlreadyPendingError(
                document.type.value, document.id,
            ) from exc
        workflow = model.to_dto()

        tasks: list[ApprovalTask] = []
        tasks.extend(self._projector.open_initiator_task(workflow))
        tasks.extend(self._projector.open_level(workflow, first_block))

        logger.info(
            "workflow_submitted",
            extra={
                "workflow_id": str(workflow.id),
                "matrix_id": str(matrix.id),
                "entity_type": workflow.entity_type.value,
                "entity_id": workflow.entity_id,
                "task_count": len(tasks),
            },
        )
        return SubmissionResult(workflow=workflow, tasks=tuple(tasks))

    # -----------------------------------------------------------------
    # Decisions
    # -----------------------------------------------------------------

    def approve(
        self,
        company_id: str,
        workflow_id: UUID,
        user_id: str,
        comments: str | None = None,
    ) -> ApprovalResult:
        """Record an approval and advance or resolve the workflow."""
        model, matrix, block = self._load_for_decision(company_id, workflow_id, user_id)

        decision = ApprovalDecision(
            user_id=user_id,
            level=block.level,
            decision=Decision.APPROVED,
            comments=comments,
            timestamp=self._clock.now(),
        )
        decisions = self._append_decision(model, decision)
        logger.info(
            "approval_recorded",
            extra={
                "workflow_id": str(workflow_id),
                "approval_level": block.level,
                "user_id": user_id,
            },
        )

        if not is_level_complete(block, decisions):
            self._flush("ApprovalWorkflow", workflow_id)
            workflow = model.to_dto()
            self._projector.complete_level(workflow, block, user_id=user_id)
            return ApprovalResult(workflow=workflow)

        following = next_block(matrix.approval_blocks, block.level)
        if following is not None:
            model.current_level = following.level
            self._flush("ApprovalWorkflow", workflow_id)
            workflow = model.to_dto()
            self._projector.complete_level(workflow, block)
            new_tasks = self._projector.open_level(workflow, following)
            logger.info(
                "level_advanced",
                extra={
                    "workflow_id": str(workflow_id),
                    "from_level": block.level,
                    "to_level": following.level,
                },
            )
            return ApprovalResult(
                workflow=workflow, tasks=new_tasks, level_completed=True,
            )

        self._transition(model, WorkflowStatus.APPROVED)
        self._flush("ApprovalWorkflow", workflow_id)
        workflow = model.to_dto()
        self._projector.complete_level(workflow, block)
        self._projector.resolve_initiator_task(workflow, comments)
        logger.info(
            "workflow_approved",
            extra={
                "workflow_id": str(workflow_id),
                "decision_count": len(workflow.decisions),
            },
        )
        return ApprovalResult(workflow=workflow, level_completed=True, completed=True)

    def decline(
        self,
        company_id: str,
        workflow_id: UUID,
        user_id: str,
        comments: str,
    ) -> ApprovalWorkflow:
        """Record a decline.  One decline ends the workflow."""
        if comments is None or not comments.strip():
            raise CommentsRequiredError(str(workflow_id))

        model, _, block = self._load_for_decision(company_id, workflow_id, user_id)

        decision = ApprovalDecision(
            user_id=user_id,
            level=block.level,
            decision=Decision.DECLINED,
            comments=comments,
            timestamp=self._clock.now(),
        )
        self._append_decision(model, decision)
        self._transition(model, WorkflowStatus.DECLINED)
        self._flush("ApprovalWorkflow", workflow_id)
        workflow = model.to_dto()

        self._projector.complete_level(workflow, block)
        self._projector.resolve_initiator_task(workflow, comments)

        logger.info(
            "workflow_declined",
            extra={
                "workflow_id": str(workflow_id),
                "approval_level": block.level,
                "user_id": user_id,
            },
        )
        return workflow

    def can_user_approve(
        self, company_id: str, workflow_id: UUID, user_id: str,
    ) -> bool:
        """True if ``user_id`` may act on the workflow's current level now."""
        workflow = self._selector.get(company_id, workflow_id)
        if workflow is None or not workflow.is_pending:
            return False
        try:
            matrix = self._matrices.get_matrix(company_id, workflow.matrix_id)
        except MatrixNotFoundError:
            return False
        block = find_block(matrix.approval_blocks, workflow.current_level)
        return (
            block is not None
            and is_authorized(block, user_id)
            and not has_decided(workflow.decisions, user_id, workflow.current_level)
        )

    def reproject_tasks(
        self, company_id: str, workflow_id: UUID,
    ) -> tuple[ApprovalTask, ...]:
        """Re-run task projection from the persisted workflow state."""
        workflow = self._selector.get(company_id, workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(str(workflow_id))
        matrix = self._matrices.get_matrix(company_id, workflow.matrix_id)
        return self._projector.reproject(workflow, matrix.approval_blocks)

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    def _load_for_decision(
        self, company_id: str, workflow_id: UUID, user_id: str,
    ) -> tuple[ApprovalWorkflowModel, ApprovalMatrix, ApprovalBlock]:
        """Check decision preconditions in order and return what they loaded."""
        model = self._selector.get_model(company_id, workflow_id)
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        if model.status != WorkflowStatus.PENDING.value:
            raise WorkflowNotPendingError(str(workflow_id), model.status)

        try:
            matrix = self._matrices.get_matrix(company_id, model.matrix_id)
        except MatrixNotFoundError:
            logger.error(
                "workflow_matrix_missing",
                extra={
                    "workflow_id": str(workflow_id),
                    "matrix_id": str(model.matrix_id),
                },
            )
            raise

        level = model.current_level
        block = find_block(matrix.approval_blocks, level)
        if block is None:
            logger.error(
                "invalid_approval_level",
                extra={
                    "workflow_id": str(workflow_id),
                    "matrix_id": str(matrix.id),
                    "approval_level": level,
                },
            )
            raise InvalidApprovalLevelError(str(workflow_id), str(matrix.id), level)

        if not is_authorized(block, user_id):
            logger.warning(
                "approver_not_authorized",
                extra={
                    "workflow_id": str(workflow_id),
                    "user_id": user_id,
                    "approval_level": level,
                },
            )
            raise NotAuthorizedAtLevelError(str(workflow_id), user_id, level)

        existing = tuple(ApprovalDecision.from_dict(d) for d in model.decisions or ())
        if has_decided(existing, user_id, level):
            raise AlreadyDecidedError(str(workflow_id), user_id, level)

        return model, matrix, block

    def _append_decision(
        self, model: ApprovalWorkflowModel, decision: ApprovalDecision,
    ) -> tuple[ApprovalDecision, ...]:
        # Reassign rather than mutate so the change is tracked and versioned
        model.decisions = [*(model.decisions or []), decision.to_dict()]
        model.updated_at = decision.timestamp
        return tuple(ApprovalDecision.from_dict(d) for d in model.decisions)

    def _transition(
        self, model: ApprovalWorkflowModel, new_status: WorkflowStatus,
    ) -> None:
        current = WorkflowStatus(model.status)
        if new_status not in WORKFLOW_TRANSITIONS.get(current, frozenset()):
            raise WorkflowNotPendingError(str(model.id), current.value)
        now = self._clock.now()
        model.status = new_status.value
        if new_status in TERMINAL_WORKFLOW_STATUSES:
            model.completed_at = now
        model.updated_at = now
