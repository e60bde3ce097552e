"""
Typed exception hierarchy for the DOA approval kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every precondition of the approval state machine fails with its own type so
callers never have to parse message strings to learn which check failed:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.approve(company_id, workflow_id, user_id)
    except AlreadyDecidedError:
        pass  # benign -- the decision is already on record
    except NotAuthorizedAtLevelError as e:
        return http_403(code=e.code, level=e.level)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DoaKernelError (base)
    |
    +-- MatrixError
    |   +-- MatrixNotFoundError
    |   +-- EmptyMatrixError
    |   +-- NoOwnerFoundError
    |   +-- InvalidMatrixError
    |   +-- MatrixInUseError
    |
    +-- WorkflowError
    |   +-- WorkflowNotFoundError
    |   +-- WorkflowNotPendingError
    |   +-- WorkflowAlreadyPendingError
    |   +-- InvalidApprovalLevelError
    |   +-- NotAuthorizedAtLevelError
    |   +-- AlreadyDecidedError
    |   +-- CommentsRequiredError
    |
    +-- TaskError
    |   +-- TaskNotFoundError
    |
    +-- ConcurrencyError
        +-- WriteConflictError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|-----------------------------------------
Matrix       | MATRIX_NOT_FOUND          | Matrix id doesn't exist for the company
             | EMPTY_MATRIX              | Resolved matrix has no approval blocks
             | NO_OWNER_FOUND            | Company has no owner and no member
             | INVALID_MATRIX            | Blocks fail structural validation
             | MATRIX_IN_USE             | Delete refused, workflows reference it
-------------|---------------------------|-----------------------------------------
Workflow     | WORKFLOW_NOT_FOUND        | Workflow id doesn't exist
             | WORKFLOW_NOT_PENDING      | Acting on an approved/declined workflow
             | WORKFLOW_ALREADY_PENDING  | Document already has a pending workflow
             | INVALID_APPROVAL_LEVEL    | Matrix has no block at current level
             | NOT_AUTHORIZED_AT_LEVEL   | User not an approver at current level
             | ALREADY_DECIDED           | User already decided at this level
             | COMMENTS_REQUIRED         | Decline without comments
-------------|---------------------------|-----------------------------------------
Task         | TASK_NOT_FOUND            | Task id doesn't exist
-------------|---------------------------|-----------------------------------------
Concurrency  | WRITE_CONFLICT            | Versioned write rejected (stale read)

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConcurrencyError is the only category retried automatically, and only by
   the approval facade (bounded, immediate re-read).

2. InvalidApprovalLevelError signals that a workflow and its matrix disagree.
   It is a data-integrity bug: log it, page someone, never retry.

3. AlreadyDecidedError is an idempotency guard: treat it as "already handled".
"""


class DoaKernelError(Exception):
    """
    Base exception for all DOA kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "DOA_KERNEL_ERROR"


# Matrix-related exceptions


class MatrixError(DoaKernelError):
    """Base exception for approval matrix errors."""

    code: str = "MATRIX_ERROR"


class MatrixNotFoundError(MatrixError):
    """Approval matrix with given ID was not found."""

    code: str = "MATRIX_NOT_FOUND"

    def __init__(self, matrix_id: str, company_id: str | None = None):
        self.matrix_id = matrix_id
        self.company_id = company_id
        super().__init__(f"Approval matrix not found: {matrix_id}")


class EmptyMatrixError(MatrixError):
    """Resolved matrix defines no approval blocks."""

    code: str = "EMPTY_MATRIX"

    def __init__(self, matrix_id: str):
        self.matrix_id = matrix_id
        super().__init__(f"Approval matrix {matrix_id} has no approval blocks")


class NoOwnerFoundError(MatrixError):
    """
    Company has no owner and no fallback member.

    Raised when a default matrix must be built but nobody can approve it.
    """

    code: str = "NO_OWNER_FOUND"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"No owner or member found for company {company_id}")


class InvalidMatrixError(MatrixError):
    """Approval blocks fail structural validation."""

    code: str = "INVALID_MATRIX"

    def __init__(self, reason: str, matrix_id: str | None = None):
        self.reason = reason
        self.matrix_id = matrix_id
        super().__init__(f"Invalid approval matrix: {reason}")


class MatrixInUseError(MatrixError):
    """Matrix cannot be deleted or restructured while workflows reference it."""

    code: str = "MATRIX_IN_USE"

    def __init__(self, matrix_id: str, workflow_count: int, action: str = "deleted"):
        self.matrix_id = matrix_id
        self.workflow_count = workflow_count
        self.action = action
        super().__init__(
            f"Approval matrix {matrix_id} cannot be {action}: referenced by "
            f"{workflow_count} workflow(s)"
        )


# Workflow-related exceptions


class WorkflowError(DoaKernelError):
    """Base exception for approval workflow errors."""

    code: str = "WORKFLOW_ERROR"


class WorkflowNotFoundError(WorkflowError):
    """Workflow with given ID was not found."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Approval workflow not found: {workflow_id}")


class WorkflowNotPendingError(WorkflowError):
    """Workflow has already been resolved."""

    code: str = "WORKFLOW_NOT_PENDING"

    def __init__(self, workflow_id: str, status: str):
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(
            f"Approval workflow {workflow_id} is not pending (status: {status})"
        )


class WorkflowAlreadyPendingError(WorkflowError):
    """Document already has a pending workflow.

    ``workflow_id`` is None when the conflict was detected by the unique
    index on insert rather than by the pre-insert lookup.
    """

    code: str = "WORKFLOW_ALREADY_PENDING"

    def __init__(
        self, document_type: str, document_id: str, workflow_id: str | None = None,
    ):
        self.document_type = document_type
        self.document_id = document_id
        self.workflow_id = workflow_id
        pending = f"workflow {workflow_id}" if workflow_id else "a workflow"
        super().__init__(
            f"Document {document_type}/{document_id} already has pending {pending}"
        )


class InvalidApprovalLevelError(WorkflowError):
    """
    Matrix has no block at the workflow's current level.

    Data-integrity error: the workflow and its matrix disagree on levels.
    """

    code: str = "INVALID_APPROVAL_LEVEL"

    def __init__(self, workflow_id: str, matrix_id: str, level: int):
        self.workflow_id = workflow_id
        self.matrix_id = matrix_id
        self.level = level
        super().__init__(
            f"Matrix {matrix_id} has no approval block at level {level} "
            f"(workflow {workflow_id})"
        )


class NotAuthorizedAtLevelError(WorkflowError):
    """User is not a listed approver for the current level."""

    code: str = "NOT_AUTHORIZED_AT_LEVEL"

    def __init__(self, workflow_id: str, user_id: str, level: int):
        self.workflow_id = workflow_id
        self.user_id = user_id
        self.level = level
        super().__init__(
            f"User {user_id} is not an approver at level {level} "
            f"of workflow {workflow_id}"
        )


class AlreadyDecidedError(WorkflowError):
    """User already recorded a decision at this level."""

    code: str = "ALREADY_DECIDED"

    def __init__(self, workflow_id: str, user_id: str, level: int):
        self.workflow_id = workflow_id
        self.user_id = user_id
        self.level = level
        super().__init__(
            f"User {user_id} already decided at level {level} "
            f"of workflow {workflow_id}"
        )


class CommentsRequiredError(WorkflowError):
    """Decline was attempted without comments."""

    code: str = "COMMENTS_REQUIRED"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(
            f"Comments are required when declining workflow {workflow_id}"
        )


# Task-related exceptions


class TaskError(DoaKernelError):
    """Base exception for approval task errors."""

    code: str = "TASK_ERROR"


class TaskNotFoundError(TaskError):
    """Task with given ID was not found."""

    code: str = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


# Concurrency-related exceptions


class ConcurrencyError(DoaKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class WriteConflictError(ConcurrencyError):
    """Optimistic concurrency conflict: the record changed since it was read."""

    code: str = "WRITE_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Write conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )
