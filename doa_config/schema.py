"""
Engine settings schema (``doa_config.schema``).

Responsibility
--------------
Frozen dataclass definitions for every engine setting.  Parsed from YAML by
``doa_config.loader``; consumed read-only by the kernel services.

Architecture position
---------------------
**Config layer** -- pure data.  Imports only kernel domain enums.

Invariants enforced
-------------------
* All settings objects are immutable after construction.
* Defaults here mirror ``defaults.yaml`` so a partial file is still valid.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from doa_kernel.domain.approval import DocumentType, TaskPriority

HR_DOCUMENT_TYPES: tuple[DocumentType, ...] = (
    DocumentType.ORG_CHART,
    DocumentType.DEPARTMENT_CHARTER,
    DocumentType.JOB_DESCRIPTION,
    DocumentType.JOB_OFFER,
    DocumentType.EMPLOYMENT_CONTRACT,
    DocumentType.TERMINATION_NOTICE,
)


@dataclass(frozen=True)
class DefaultMatrixSettings:
    """Templates and seed list for owner-approval default matrices.

    Templates accept ``{document_type}`` and ``{document_type_name}``.
    """

    matrix_name: str = "Default {document_type_name} Approval"
    matrix_description: str = (
        "Default approval matrix for {document_type_name} - requires owner approval"
    )
    document_types: tuple[DocumentType, ...] = HR_DOCUMENT_TYPES


@dataclass(frozen=True)
class TaskSettings:
    approver_priority: TaskPriority = TaskPriority.HIGH
    initiator_priority: TaskPriority = TaskPriority.MEDIUM
    declined_priority: TaskPriority = TaskPriority.HIGH
    review_priority: TaskPriority = TaskPriority.HIGH
    review_deadline_days: int = 30


@dataclass(frozen=True)
class EngineSettings:
    """Root settings object handed to the approval facade."""

    max_write_attempts: int = 3
    defaults: DefaultMatrixSettings = field(default_factory=DefaultMatrixSettings)
    tasks: TaskSettings = field(default_factory=TaskSettings)
