"""
doa_kernel.services.matrix_service -- Approval matrix store.

Responsibility:
    Owns the ``ApprovalMatrix`` lifecycle: creation, partial update,
    archival and deletion, plus matrix resolution for a submission.
    Resolution falls back to building a single-level owner-approval
    default matrix when a company has none configured for a document type.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/,
    doa_engines and doa_config.schema.

Invariants enforced:
    - Structural validity: every stored matrix passes
      ``doa_engines.validate_blocks`` (levels unique and contiguous from 1,
      non-empty approver lists, ``min_approvals`` within bounds).
    - Default creation is explicit and logged (``default_matrix_created``);
      once created it is reused by later resolutions.
    - A matrix referenced by any workflow cannot be deleted.
    - Approval blocks are frozen while a pending workflow references the
      matrix, so in-flight workflows keep the policy they were submitted under.

Failure modes:
    - MatrixNotFoundError if the id is unknown within the company.
    - InvalidMatrixError on structural validation failure.
    - NoOwnerFoundError when a default matrix is needed but the company
      has no owner and no members.
    - MatrixInUseError on delete of a referenced matrix, or on a block
      change while a pending workflow references it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from doa_config.schema import DefaultMatrixSettings
from doa_engines import select_matrix, sort_blocks, validate_blocks
from doa_kernel.domain.approval import (
    ApprovalBlock,
    ApprovalMatrix,
    ApprovalTask,
    Approver,
    ApproverType,
    DocumentType,
    MatrixStatus,
    WorkflowStatus,
    document_type_name,
    parse_block,
)
from doa_kernel.domain.clock import Clock, SystemClock
from doa_kernel.domain.directory import CompanyDirectory, resolve_owner_id
from doa_kernel.exceptions import (
    InvalidMatrixError,
    MatrixInUseError,
    MatrixNotFoundError,
)
from doa_kernel.logging_config import get_logger
from doa_kernel.models.matrix import ApprovalMatrixModel
from doa_kernel.selectors.matrix_selector import MatrixSelector
from doa_kernel.services.base import BaseService
from doa_kernel.services.task_projector import TaskProjector

logger = get_logger("services.matrix_service")

# Marks an update field the caller did not supply
_UNSET: Any = object()


@dataclass(frozen=True)
class CompanyInitialization:
    """Matrices and review tasks created by ``initialize_company``."""

    matrices: tuple[ApprovalMatrix, ...]
    tasks: tuple[ApprovalTask, ...]


def _require_company(company_id: str) -> str:
    if not company_id or not str(company_id).strip():
        raise ValueError("company_id must not be empty")
    return company_id


def _coerce_blocks(
    raw_blocks: Iterable[ApprovalBlock | Mapping[str, Any]],
) -> tuple[ApprovalBlock, ...]:
    try:
        return sort_blocks(parse_block(b) for b in raw_blocks)
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidMatrixError(f"malformed approval block: {exc}") from exc


def _check_amount_range(
    min_amount: Decimal | None, max_amount: Decimal | None, matrix_id: str | None,
) -> None:
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise InvalidMatrixError(
            f"min_amount {min_amount} exceeds max_amount {max_amount}", matrix_id,
        )


class MatrixService(BaseService[ApprovalMatrixModel]):
    """Company-scoped approval matrix store and default policy."""

    def __init__(
        self,
        session: Session,
        directory: CompanyDirectory,
        clock: Clock | None = None,
        settings: DefaultMatrixSettings | None = None,
        projector: TaskProjector | None = None,
    ):
        super().__init__(session)
        self._directory = directory
        self._clock = clock or SystemClock()
        self._settings = settings or DefaultMatrixSettings()
        self._projector = projector or TaskProjector(session, self._clock)
        self._selector = MatrixSelector(session)

    # -----------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------

    def create_matrix(
        self,
        company_id: str,
        name: str,
        document_type: DocumentType | str,
        approval_blocks: Iterable[ApprovalBlock | Mapping[str, Any]],
        created_by: str,
        description: str | None = None,
        status: MatrixStatus | str = MatrixStatus.ACTIVE,
        min_amount: Decimal | None = None,
        max_amount: Decimal | None = None,
        currency: str = "USD",
    ) -> ApprovalMatrix:
        """Validate and persist a new matrix.

        Raw approver entries in ``approval_blocks`` are normalized here.
        """
        _require_company(company_id)
        document_type = DocumentType(document_type)
        status = MatrixStatus(status)
        blocks = _coerce_blocks(approval_blocks)
        problems = validate_blocks(blocks, status)
        if problems:
            raise InvalidMatrixError("; ".join(problems))
        _check_amount_range(min_amount, max_amount, None)

        now = self._clock.now()
        model = ApprovalMatrixModel(
            id=uuid4(),
            company_id=company_id,
            name=name,
            description=description,
            document_type=document_type.value,
            status=status.value,
            approval_blocks=[b.to_dict() for b in blocks],
            min_amount=min_amount,
            max_amount=max_amount,
            currency=currency,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self._flush("ApprovalMatrix", model.id)

        logger.info(
            "matrix_created",
            extra={
                "matrix_id": str(model.id),
                "document_type": document_type.value,
                "block_count": len(blocks),
                "status": status.value,
            },
        )
        return model.to_dto()

    def get_matrix(self, company_id: str, matrix_id: UUID) -> ApprovalMatrix:
        return self._load_model(company_id, matrix_id).to_dto()

    def list_matrices(
        self,
        company_id: str,
        document_type: DocumentType | str | None = None,
        status: MatrixStatus | str | None = None,
    ) -> tuple[ApprovalMatrix, ...]:
        return self._selector.list_for_company(company_id, document_type, status)

    def update_matrix(
        self,
        company_id: str,
        matrix_id: UUID,
        *,
        name: str = _UNSET,
        description: str | None = _UNSET,
        status: MatrixStatus | str = _UNSET,
        approval_blocks: Iterable[ApprovalBlock | Mapping[str, Any]] = _UNSET,
        min_amount: Decimal | None = _UNSET,
        max_amount: Decimal | None = _UNSET,
        currency: str = _UNSET,
    ) -> ApprovalMatrix:
        """Apply a partial update and re-validate the whole matrix.

        Pending workflows are evaluated against the blocks of the matrix
        they were submitted under, so those blocks are frozen while any
        pending workflow references the matrix.  Other fields, status
        included, stay editable.

        Raises:
            MatrixInUseError: if ``approval_blocks`` differ from the stored
                blocks and a pending workflow references the matrix.
        """
        model = self._load_model(company_id, matrix_id)

        new_status = MatrixStatus(model.status if status is _UNSET else status)
        current_blocks = model.to_dto().approval_blocks
        if approval_blocks is _UNSET:
            blocks = current_blocks
        else:
            blocks = _coerce_blocks(approval_blocks)
            if blocks != current_blocks:
                pending = self._selector.workflow_count(
                    matrix_id, WorkflowStatus.PENDING,
                )
                if pending:
                    logger.warning(
                        "matrix_blocks_frozen",
                        extra={
                            "matrix_id": str(matrix_id),
                            "pending_workflows": pending,
                        },
                    )
                    raise MatrixInUseError(str(matrix_id), pending, "restructured")
        problems = validate_blocks(blocks, new_status)
        if problems:
            raise InvalidMatrixError("; ".join(problems), str(matrix_id))

        new_min = model.min_amount if min_amount is _UNSET else min_amount
        new_max = model.max_amount if max_amount is _UNSET else max_amount
        _check_amount_range(new_min, new_max, str(matrix_id))

        if name is not _UNSET:
            model.name = name
        if description is not _UNSET:
            model.description = description
        if currency is not _UNSET:
            model.currency = currency
        model.status = new_status.value
        model.approval_blocks = [b.to_dict() for b in blocks]
        model.min_amount = new_min
        model.max_amount = new_max
        model.updated_at = self._clock.now()
        self._flush("ApprovalMatrix", matrix_id)

        logger.info(
            "matrix_updated",
            extra={"matrix_id": str(matrix_id), "status": new_status.value},
        )
        return model.to_dto()

    def archive_matrix(self, company_id: str, matrix_id: UUID) -> ApprovalMatrix:
        return self.update_matrix(company_id, matrix_id, status=MatrixStatus.ARCHIVED)

    def delete_matrix(self, company_id: str, matrix_id: UUID) -> None:
        """Delete a matrix that no workflow references."""
        model = self._load_model(company_id, matrix_id)
        in_use = self._selector.workflow_count(matrix_id)
        if in_use:
            raise MatrixInUseError(str(matrix_id), in_use)
        self.session.delete(model)
        self._flush("ApprovalMatrix", matrix_id)
        logger.info("matrix_deleted", extra={"matrix_id": str(matrix_id)})

    # -----------------------------------------------------------------
    # Resolution
    # -----------------------------------------------------------------

    def get_active_matrix(
        self,
        company_id: str,
        document_type: DocumentType | str,
        amount: Decimal | None = None,
    ) -> ApprovalMatrix | None:
        """The active matrix governing ``document_type`` at ``amount``, if any."""
        candidates = self._selector.active_candidates(
            _require_company(company_id), DocumentType(document_type),
        )
        return select_matrix(candidates, amount)

    def resolve_matrix(
        self,
        company_id: str,
        document_type: DocumentType | str,
        amount: Decimal | None = None,
    ) -> ApprovalMatrix:
        """Return the governing matrix, creating the default if none exists."""
        matrix = self.get_active_matrix(company_id, document_type, amount)
        if matrix is not None:
            return matrix
        return self.create_default_matrix(company_id, document_type)

    def create_default_matrix(
        self, company_id: str, document_type: DocumentType | str,
    ) -> ApprovalMatrix:
        """Build and persist the single-level owner-approval matrix.

        Raises:
            NoOwnerFoundError: if the company has no owner and no members.
        """
        document_type = DocumentType(document_type)
        owner_id = resolve_owner_id(self._directory, _require_company(company_id))
        type_name = document_type_name(document_type)
        template_args = {
            "document_type": document_type.value,
            "document_type_name": type_name,
        }
        block = ApprovalBlock(
            level=1,
            approvers=(Approver(type=ApproverType.USER, value=owner_id, label="Owner"),),
            requires_all=True,
        )
        matrix = self.create_matrix(
            company_id=company_id,
            name=self._settings.matrix_name.format(**template_args),
            description=self._settings.matrix_description.format(**template_args),
            document_type=document_type,
            approval_blocks=[block],
            created_by=owner_id,
        )
        logger.info(
            "default_matrix_created",
            extra={
                "matrix_id": str(matrix.id),
                "document_type": document_type.value,
                "owner_id": owner_id,
            },
        )
        return matrix

    def initialize_company(self, company_id: str) -> CompanyInitialization:
        """Seed default matrices and owner review tasks for a company.

        Only document types with no active matrix get a default.  Every
        governing matrix of a seeded type gets one review task for the
        owner.  Re-running creates nothing new.
        """
        owner_id = resolve_owner_id(self._directory, _require_company(company_id))
        matrices: list[ApprovalMatrix] = []
        tasks: list[ApprovalTask] = []
        for document_type in self._settings.document_types:
            matrix = self.get_active_matrix(company_id, document_type)
            if matrix is None:
                matrix = self.create_default_matrix(company_id, document_type)
                matrices.append(matrix)
            tasks.extend(self._projector.open_review_task(matrix, owner_id))

        logger.info(
            "company_initialized",
            extra={
                "matrices_created": len(matrices),
                "tasks_created": len(tasks),
            },
        )
        return CompanyInitialization(matrices=tuple(matrices), tasks=tuple(tasks))

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    def _load_model(self, company_id: str, matrix_id: UUID) -> ApprovalMatrixModel:
        model = self._selector.get_model(company_id, matrix_id)
        if model is None:
            raise MatrixNotFoundError(str(matrix_id), company_id)
        return model
