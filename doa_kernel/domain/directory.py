"""
Company directory -- the engine's view of company membership.

Responsibility:
    Answers "who owns company X" for default-matrix construction and
    review-task assignment.  The surrounding application supplies the real
    implementation (membership tables, an identity provider, ...).

Architecture position:
    Kernel > Domain.  Protocol plus an in-memory implementation.  ZERO I/O.

Failure modes:
    - NoOwnerFoundError from ``resolve_owner_id`` when the company has no
      owner and no member to fall back on.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol

from doa_kernel.exceptions import NoOwnerFoundError


class CompanyDirectory(Protocol):
    """Pluggable interface for company membership lookups."""

    def get_owner_id(self, company_id: str) -> str | None:
        """Return the canonical owner of the company, if one is recorded."""
        ...

    def get_member_ids(self, company_id: str) -> tuple[str, ...]:
        """Return all member user ids, in a deterministic order."""
        ...


def resolve_owner_id(directory: CompanyDirectory, company_id: str) -> str:
    """Return the company owner, falling back to the first member.

    Raises:
        NoOwnerFoundError: if the company has no associated user at all.
    """
    owner_id = directory.get_owner_id(company_id)
    if owner_id:
        return owner_id
    members = directory.get_member_ids(company_id)
    if members:
        return members[0]
    raise NoOwnerFoundError(company_id)


class InMemoryCompanyDirectory:
    """Dictionary-backed ``CompanyDirectory`` for tests and embedded use."""

    def __init__(
        self,
        owners: Mapping[str, str] | None = None,
        members: Mapping[str, Iterable[str]] | None = None,
    ):
        self._owners: dict[str, str] = dict(owners or {})
        self._members: dict[str, list[str]] = {
            company_id: list(user_ids)
            for company_id, user_ids in (members or {}).items()
        }

    def set_owner(self, company_id: str, user_id: str | None) -> None:
        if user_id is None:
            self._owners.pop(company_id, None)
        else:
            self._owners[company_id] = user_id

    def add_member(self, company_id: str, user_id: str) -> None:
        members = self._members.setdefault(company_id, [])
        if user_id not in members:
            members.append(user_id)

    def get_owner_id(self, company_id: str) -> str | None:
        return self._owners.get(company_id)

    def get_member_ids(self, company_id: str) -> tuple[str, ...]:
        return tuple(self._members.get(company_id, ()))
