"""Database layer - engine, base classes and column coercions."""

from doa_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from doa_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
)
from doa_kernel.db.types import as_utc

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "as_utc",
]
