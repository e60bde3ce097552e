"""
Approval domain types (``doa_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the delegation-of-authority engine.  Defines the
workflow lifecycle state machine, matrix/block policy data, decision and
task records, and the boundary normalization of raw approver entries.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``WORKFLOW_TRANSITIONS`` defines the only
  valid status transitions.  Terminal states have no outgoing edges.
* Approvers are normalized at the boundary -- the engine only ever sees
  ``Approver`` values, never raw strings or form dicts.
* Decisions are immutable once created.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Document types
# =========================================================================


class DocumentType(str, Enum):
    """Kinds of business document governed by an approval matrix."""

    ORG_CHART = "orgchart"
    DEPARTMENT_CHARTER = "department_charter"
    JOB_DESCRIPTION = "job_description"
    JOB_OFFER = "job_offer"
    EMPLOYMENT_CONTRACT = "employment_contract"
    TERMINATION_NOTICE = "termination_notice"
    PURCHASE_ORDER = "purchase_order"
    SALES_ORDER = "sales_order"
    INVOICE = "invoice"
    PAYMENT = "payment"
    CONTRACT = "contract"
    OTHER = "other"


DOCUMENT_TYPE_NAMES: dict[DocumentType, str] = {
    DocumentType.ORG_CHART: "Organization Chart",
    DocumentType.DEPARTMENT_CHARTER: "Department Charter",
    DocumentType.JOB_DESCRIPTION: "Job Description",
    DocumentType.JOB_OFFER: "Job Offer",
    DocumentType.EMPLOYMENT_CONTRACT: "Employment Contract",
    DocumentType.TERMINATION_NOTICE: "Termination Notice",
    DocumentType.PURCHASE_ORDER: "Purchase Order",
    DocumentType.SALES_ORDER: "Sales Order",
    DocumentType.INVOICE: "Invoice",
    DocumentType.PAYMENT: "Payment",
    DocumentType.CONTRACT: "Contract",
    DocumentType.OTHER: "Other Document",
}


def document_type_name(document_type: DocumentType | str) -> str:
    """Human display name for a document type (falls back to the raw value)."""
    try:
        return DOCUMENT_TYPE_NAMES[DocumentType(document_type)]
    except ValueError:
        return str(document_type)


# =========================================================================
# Matrix status
# =========================================================================


class MatrixStatus(str, Enum):
    """Approval matrix lifecycle states."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


# =========================================================================
# Workflow Status Lifecycle
# =========================================================================


class WorkflowStatus(str, Enum):
    """Approval workflow lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset({
        WorkflowStatus.APPROVED,
        WorkflowStatus.DECLINED,
    }),
    WorkflowStatus.APPROVED: frozenset(),
    WorkflowStatus.DECLINED: frozenset(),
}

TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.APPROVED,
    WorkflowStatus.DECLINED,
})


class Decision(str, Enum):
    """Decision an approver records at a level."""

    APPROVED = "approved"
    DECLINED = "declined"


# =========================================================================
# Task types
# =========================================================================


class TaskType(str, Enum):
    """Worklist entry kinds."""

    APPROVAL_REQUEST = "approval_request"
    APPROVAL_RESPONSE = "approval_response"
    REVIEW_DOA_MATRIX = "review_doa_matrix"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Lower rank sorts first in a worklist
PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}


# =========================================================================
# Approvers and blocks
# =========================================================================


class ApproverType(str, Enum):
    USER = "user"
    POSITION = "position"


@dataclass(frozen=True)
class Approver:
    """A normalized approver reference.

    ``value`` is the opaque identity the engine matches acting users
    against; ``label`` is display-only.
    """

    type: ApproverType
    value: str
    label: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "value": self.value, "label": self.label}


def normalize_approver(raw: Approver | str | Mapping[str, Any]) -> Approver:
    """Normalize a raw approver entry into an ``Approver``.

    Accepted shapes:
        - ``Approver`` (returned unchanged)
        - ``"user-123"`` -- a plain user id
        - ``{"userId": "user-123", "name": "Jane"}`` -- legacy form entry
        - ``{"type": "position", "value": "pos-9", "label": "CFO"}``

    Raises:
        ValueError: if no identity value can be extracted.
    """
    if isinstance(raw, Approver):
        return raw
    if isinstance(raw, str):
        value = raw.strip()
        if not value:
            raise ValueError("Approver id must not be empty")
        return Approver(type=ApproverType.USER, value=value, label=value)
    if isinstance(raw, Mapping):
        value = str(raw.get("value") or raw.get("userId") or raw.get("id") or "").strip()
        if not value:
            raise ValueError(f"Approver entry has no identity value: {dict(raw)!r}")
        approver_type = ApproverType(raw.get("type") or ApproverType.USER.value)
        label = str(raw.get("label") or raw.get("name") or value)
        return Approver(type=approver_type, value=value, label=label)
    raise ValueError(f"Unsupported approver entry: {raw!r}")


@dataclass(frozen=True)
class ApprovalBlock:
    """One level of required sign-off."""

    level: int
    approvers: tuple[Approver, ...]
    requires_all: bool = True
    min_approvals: int | None = None

    @property
    def approver_ids(self) -> tuple[str, ...]:
        """Opaque identity set of the block's approvers, in listed order."""
        return tuple(a.value for a in self.approvers)

    @property
    def required_approvals(self) -> int:
        """Approvals needed to complete the level."""
        if self.requires_all:
            return len(self.approvers)
        return self.min_approvals if self.min_approvals is not None else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "approvers": [a.to_dict() for a in self.approvers],
            "requires_all": self.requires_all,
            "min_approvals": self.min_approvals,
        }


def _parse_flag(value: Any, name: str) -> bool:
    """Accept a real boolean or its "true"/"false" form-field spelling."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def parse_block(raw: ApprovalBlock | Mapping[str, Any]) -> ApprovalBlock:
    """Build an ``ApprovalBlock`` from a stored or form-supplied mapping.

    Accepts both ``requires_all``/``min_approvals`` and the camelCase
    ``requiresAll``/``minApprovals`` keys.
    """
    if isinstance(raw, ApprovalBlock):
        return raw
    requires_all = raw.get("requires_all", raw.get("requiresAll", True))
    min_approvals = raw.get("min_approvals", raw.get("minApprovals"))
    return ApprovalBlock(
        level=int(raw["level"]),
        approvers=tuple(normalize_approver(a) for a in raw.get("approvers", ())),
        requires_all=_parse_flag(requires_all, "requires_all"),
        min_approvals=int(min_approvals) if min_approvals is not None else None,
    )


# =========================================================================
# Matrix
# =========================================================================


@dataclass(frozen=True)
class ApprovalMatrix:
    """Immutable snapshot of a company-scoped approval policy."""

    id: UUID
    company_id: str
    name: str
    document_type: DocumentType
    status: MatrixStatus
    approval_blocks: tuple[ApprovalBlock, ...]
    created_by: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    currency: str = "USD"
    version: int = 1

    @property
    def is_ranged(self) -> bool:
        return self.min_amount is not None or self.max_amount is not None


# =========================================================================
# Documents, decisions and workflows
# =========================================================================


@dataclass(frozen=True)
class DocumentRef:
    """Opaque metadata for a document submitted for approval."""

    id: str
    type: DocumentType
    title: str
    amount: Decimal | None = None

    def __post_init__(self) -> None:
        if not self.id or not str(self.id).strip():
            raise ValueError("Document id must not be empty")
        # Accept raw strings at the boundary; unknown types raise ValueError
        object.__setattr__(self, "type", DocumentType(self.type))


@dataclass(frozen=True)
class ApprovalDecision:
    """Record of a single approver's action at one level. Immutable."""

    user_id: str
    level: int
    decision: Decision
    timestamp: datetime
    comments: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "level": self.level,
            "decision": self.decision.value,
            "comments": self.comments,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ApprovalDecision:
        return cls(
            user_id=data["user_id"],
            level=int(data["level"]),
            decision=Decision(data["decision"]),
            comments=data.get("comments"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class ApprovalWorkflow:
    """Immutable snapshot of one approval instance for one document.

    ``matrix_id`` is snapshotted at submission; editing the matrix later
    never re-routes an in-flight workflow.
    """

    id: UUID
    company_id: str
    entity_type: DocumentType
    entity_id: str
    document_title: str
    status: WorkflowStatus
    current_level: int
    matrix_id: UUID
    initiator_id: str
    submitted_at: datetime
    created_at: datetime
    updated_at: datetime
    decisions: tuple[ApprovalDecision, ...] = ()
    completed_at: datetime | None = None
    document_amount: Decimal | None = None
    version: int = 1

    @property
    def is_pending(self) -> bool:
        return self.status == WorkflowStatus.PENDING


@dataclass(frozen=True)
class ApprovalTask:
    """Immutable snapshot of a human worklist entry."""

    id: UUID
    company_id: str
    task_type: TaskType
    user_id: str
    title: str
    description: str
    priority: TaskPriority
    completed: bool
    created_at: datetime
    updated_at: datetime
    workflow_id: UUID | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    level: int | None = None
    completed_at: datetime | None = None
    deadline: datetime | None = None
    version: int = 1


# =========================================================================
# Operation results
# =========================================================================


@dataclass(frozen=True)
class SubmissionResult:
    """Workflow created by a submission and every task created with it."""

    workflow: ApprovalWorkflow
    tasks: tuple[ApprovalTask, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ApprovalResult:
    """Outcome of an approve call.

    ``tasks`` holds tasks opened for the next level (empty unless the level
    advanced).  ``completed`` is True once the workflow is fully approved.
    """

    workflow: ApprovalWorkflow
    tasks: tuple[ApprovalTask, ...] = ()
    level_completed: bool = False
    completed: bool = False
