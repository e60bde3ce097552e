"""
Module: doa_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors form the read side of the engine, providing structured access
    to matrices, workflows and tasks without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: Selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen dataclasses, NOT raw ORM
      model instances.  The ``*_model`` helpers are the one exception and are
      reserved for services that need the row they are about to update.
    - Session ownership: Selectors do NOT create or manage their own sessions.

Failure modes:
    - Returns None or an empty tuple when nothing matches (never raises on
      absence of data).
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from doa_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
