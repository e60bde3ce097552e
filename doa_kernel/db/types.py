"""
Module: doa_kernel.db.types
Responsibility: Value coercions shared by every model's ``to_dto()``.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Datetimes leaving the persistence layer are always timezone-aware UTC.
      SQLite drops tzinfo on round-trip; ``as_utc`` restores it so DTOs
      compare equal regardless of backend.
"""

from datetime import datetime, timezone


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
