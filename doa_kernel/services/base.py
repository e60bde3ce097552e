"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services inherit
    from BaseService, receiving a SQLAlchemy ``Session`` that they use
    via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The approval
      facade owns commit/rollback and retry.
    - Stale writes surface as ``WriteConflictError``, never as a raw
      SQLAlchemy exception.

Failure modes:
    - WriteConflictError when a versioned UPDATE matched no row.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from doa_kernel.db.base import Base
from doa_kernel.exceptions import WriteConflictError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only (read) methods -- those belong
          in ``doa_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _flush(self, entity_type: str, entity_id: object) -> None:
        """Flush pending changes, translating a stale version check."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise WriteConflictError(entity_type, str(entity_id)) from exc
