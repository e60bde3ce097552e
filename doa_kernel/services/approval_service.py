"""
doa_kernel.services.approval_service -- Approval service facade.

Responsibility:
    The public entry point of the engine.  Composes the matrix store, the
    workflow state machine and the task projector, and owns transaction
    boundaries: every operation runs in a fresh session, commits on
    success and rolls back on failure.

Architecture position:
    Kernel > Services (outermost).  The only component that commits.

Invariants enforced:
    - A transition is all-or-nothing: the workflow write and its task
      projection commit in one transaction.
    - Bounded retry: ``WriteConflictError`` (and only that) re-runs the
      whole read-evaluate-write cycle in a new session, up to
      ``EngineSettings.max_write_attempts`` times, then propagates.
    - Log context: company, actor and workflow ids are bound for the
      duration of each operation.

Failure modes:
    - Every typed error from the inner services propagates unchanged.
    - WriteConflictError after the final attempt.

Usage:
    service = ApprovalService(get_session_factory(), directory)
    result = service.submit_for_approval(
        "company-1",
        DocumentRef(id="oc-7", type=DocumentType.ORG_CHART, title="Q3 Org"),
        initiator_id="user-1",
    )
    service.approve("company-1", result.workflow.id, "owner-1")
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from doa_config import EngineSettings, get_engine_settings
from doa_kernel.domain.approval import (
    ApprovalBlock,
    ApprovalMatrix,
    ApprovalResult,
    ApprovalTask,
    ApprovalWorkflow,
    DocumentRef,
    DocumentType,
    MatrixStatus,
    SubmissionResult,
    WorkflowStatus,
)
from doa_kernel.domain.clock import Clock, SystemClock
from doa_kernel.domain.directory import CompanyDirectory
from doa_kernel.exceptions import TaskNotFoundError, WriteConflictError
from doa_kernel.logging_config import LogContext, get_logger
from doa_kernel.selectors.task_selector import TaskSelector
from doa_kernel.selectors.workflow_selector import (
    ApprovalHistoryEntry,
    WorkflowSelector,
)
from doa_kernel.services.matrix_service import CompanyInitialization, MatrixService
from doa_kernel.services.task_projector import TaskProjector
from doa_kernel.services.workflow_service import WorkflowService

logger = get_logger("services.approval_service")

T = TypeVar("T")


@dataclass
class _UnitOfWork:
    """Services bound to one session."""

    session: Session
    projector: TaskProjector
    matrices: MatrixService
    workflows: WorkflowService
    workflow_reads: WorkflowSelector
    task_reads: TaskSelector


class ApprovalService:
    """Public facade of the delegation-of-authority engine."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        directory: CompanyDirectory,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._clock = clock or SystemClock()
        self._settings = settings or get_engine_settings()

    # -----------------------------------------------------------------
    # Transaction plumbing
    # -----------------------------------------------------------------

    def _unit_of_work(self, session: Session) -> _UnitOfWork:
        projector = TaskProjector(session, self._clock, self._settings.tasks)
        matrices = MatrixService(
            session, self._directory, self._clock, self._settings.defaults, projector,
        )
        return _UnitOfWork(
            session=session,
            projector=projector,
            matrices=matrices,
            workflows=WorkflowService(session, matrices, projector, self._clock),
            workflow_reads=WorkflowSelector(session),
            task_reads=TaskSelector(session),
        )

    def _write(
        self,
        operation: str,
        work: Callable[[_UnitOfWork], T],
        **context: Any,
    ) -> T:
        """Run ``work`` in its own transaction, retrying on write conflict."""
        max_attempts = self._settings.max_write_attempts
        with LogContext.bind(**context):
            for attempt in range(1, max_attempts + 1):
                session = self._session_factory()
                try:
                    result = work(self._unit_of_work(session))
                    try:
                        session.commit()
                    except StaleDataError as exc:
                        raise WriteConflictError(operation, str(context)) from exc
                    return result
                except WriteConflictError as exc:
                    session.rollback()
                    if attempt >= max_attempts:
                        logger.error(
                            "write_conflict_exhausted",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise
                    logger.warning(
                        "write_conflict_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "entity_type": exc.entity_type,
                            "entity_id": exc.entity_id,
                        },
                    )
                except Exception:
                    session.rollback()
                    raise
                finally:
                    session.close()
        raise RuntimeError(f"{operation}: max_write_attempts must be at least 1")

    def _read(self, work: Callable[[_UnitOfWork], T]) -> T:
        session = self._session_factory()
        try:
            return work(self._unit_of_work(session))
        finally:
            session.close()

    # -----------------------------------------------------------------
    # Workflow lifecycle
    # -----------------------------------------------------------------

    def submit_for_approval(
        self, company_id: str, document: DocumentRef, initiator_id: str,
    ) -> SubmissionResult:
        return self._write(
            "submit_for_approval",
            lambda uow: uow.workflows.submit(company_id, document, initiator_id),
            company_id=company_id,
            actor_id=initiator_id,
        )

    def approve(
        self,
        company_id: str,
        workflow_id: UUID,
        user_id: str,
        comments: str | None = None,
    ) -> ApprovalResult:
        return self._write(
            "approve",
            lambda uow: uow.workflows.approve(company_id, workflow_id, user_id, comments),
            company_id=company_id,
            actor_id=user_id,
            workflow_id=workflow_id,
        )

    def decline(
        self,
        company_id: str,
        workflow_id: UUID,
        user_id: str,
        comments: str,
    ) -> ApprovalWorkflow:
        return self._write(
            "decline",
            lambda uow: uow.workflows.decline(company_id, workflow_id, user_id, comments),
            company_id=company_id,
            actor_id=user_id,
            workflow_id=workflow_id,
        )

    def complete_task(self, company_id: str, task_id: UUID) -> ApprovalTask:
        return self._write(
            "complete_task",
            lambda uow: uow.projector.complete_task(company_id, task_id),
            company_id=company_id,
        )

    def reproject_tasks(
        self, company_id: str, workflow_id: UUID,
    ) -> tuple[ApprovalTask, ...]:
        return self._write(
            "reproject_tasks",
            lambda uow: uow.workflows.reproject_tasks(company_id, workflow_id),
            company_id=company_id,
            workflow_id=workflow_id,
        )

    # -----------------------------------------------------------------
    # Matrix store
    # -----------------------------------------------------------------

    def resolve_matrix(
        self,
        company_id: str,
        document_type: DocumentType | str,
        amount: Decimal | None = None,
    ) -> ApprovalMatrix:
        return self._write(
            "resolve_matrix",
            lambda uow: uow.matrices.resolve_matrix(company_id, document_type, amount),
            company_id=company_id,
        )

    def get_active_matrix(
        self,
        company_id: str,
        document_type: DocumentType | str,
        amount: Decimal | None = None,
    ) -> ApprovalMatrix | None:
        return self._read(
            lambda uow: uow.matrices.get_active_matrix(company_id, document_type, amount)
        )

    def create_matrix(
        self,
        company_id: str,
        name: str,
        document_type: DocumentType | str,
        approval_blocks: list[ApprovalBlock | dict[str, Any]],
        created_by: str,
        **options: Any,
    ) -> ApprovalMatrix:
        return self._write(
            "create_matrix",
            lambda uow: uow.matrices.create_matrix(
                company_id, name, document_type, approval_blocks, created_by, **options,
            ),
            company_id=company_id,
            actor_id=created_by,
        )

    def get_matrix(self, company_id: str, matrix_id: UUID) -> ApprovalMatrix:
        return self._read(lambda uow: uow.matrices.get_matrix(company_id, matrix_id))

    def list_matrices(
        self,
        company_id: str,
        document_type: DocumentType | str | None = None,
        status: MatrixStatus | str | None = None,
    ) -> tuple[ApprovalMatrix, ...]:
        return self._read(
            lambda uow: uow.matrices.list_matrices(company_id, document_type, status)
        )

    def update_matrix(
        self, company_id: str, matrix_id: UUID, **changes: Any,
    ) -> ApprovalMatrix:
        return self._write(
            "update_matrix",
            lambda uow: uow.matrices.update_matrix(company_id, matrix_id, **changes),
            company_id=company_id,
        )

    def archive_matrix(self, company_id: str, matrix_id: UUID) -> ApprovalMatrix:
        return self._write(
            "archive_matrix",
            lambda uow: uow.matrices.archive_matrix(company_id, matrix_id),
            company_id=company_id,
        )

    def delete_matrix(self, company_id: str, matrix_id: UUID) -> None:
        self._write(
            "delete_matrix",
            lambda uow: uow.matrices.delete_matrix(company_id, matrix_id),
            company_id=company_id,
        )

    def initialize_company(self, company_id: str) -> CompanyInitialization:
        return self._write(
            "initialize_company",
            lambda uow: uow.matrices.initialize_company(company_id),
            company_id=company_id,
        )

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def get_workflow(self, company_id: str, workflow_id: UUID) -> ApprovalWorkflow | None:
        return self._read(lambda uow: uow.workflow_reads.get(company_id, workflow_id))

    def get_workflow_for_document(
        self, company_id: str, document_type: DocumentType | str, document_id: str,
    ) -> ApprovalWorkflow | None:
        """Most recently created workflow for the document, if any."""
        return self._read(
            lambda uow: uow.workflow_reads.latest_for_document(
                company_id, document_type, document_id,
            )
        )

    def list_document_workflows(
        self, company_id: str, document_type: DocumentType | str, document_id: str,
    ) -> tuple[ApprovalWorkflow, ...]:
        return self._read(
            lambda uow: uow.workflow_reads.list_for_document(
                company_id, document_type, document_id,
            )
        )

    def list_company_workflows(
        self, company_id: str, status: WorkflowStatus | str | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        return self._read(
            lambda uow: uow.workflow_reads.list_for_company(company_id, status)
        )

    def get_approval_history(
        self, company_id: str, document_type: DocumentType | str, document_id: str,
    ) -> tuple[ApprovalHistoryEntry, ...]:
        return self._read(
            lambda uow: uow.workflow_reads.approval_history(
                company_id, document_type, document_id,
            )
        )

    def can_user_approve(
        self, company_id: str, workflow_id: UUID, user_id: str,
    ) -> bool:
        return self._read(
            lambda uow: uow.workflows.can_user_approve(company_id, workflow_id, user_id)
        )

    def get_task(self, company_id: str, task_id: UUID) -> ApprovalTask:
        task = self._read(lambda uow: uow.task_reads.get(company_id, task_id))
        if task is None:
            raise TaskNotFoundError(str(task_id))
        return task

    def get_user_tasks(
        self, company_id: str, user_id: str, include_completed: bool = False,
    ) -> tuple[ApprovalTask, ...]:
        """The user's worklist: incomplete first, then priority, then newest."""
        return self._read(
            lambda uow: uow.task_reads.for_user(company_id, user_id, include_completed)
        )

    def get_workflow_tasks(self, workflow_id: UUID) -> tuple[ApprovalTask, ...]:
        return self._read(lambda uow: uow.task_reads.for_workflow(workflow_id))
