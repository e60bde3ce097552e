"""
Module: doa_engines
Responsibility:
    Package entrypoint that re-exports the pure approval evaluation
    functions.  This is the canonical import surface for the service layer.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import doa_kernel/domain types.
    MUST NOT import doa_kernel services, selectors or models.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.
    - Determinism: identical inputs always produce identical outputs.
"""

from doa_engines.approval import (
    amount_in_range,
    count_approvals,
    find_block,
    has_decided,
    is_authorized,
    is_level_complete,
    next_block,
    select_matrix,
    sort_blocks,
    validate_blocks,
)

__all__ = [
    "amount_in_range",
    "count_approvals",
    "find_block",
    "has_decided",
    "is_authorized",
    "is_level_complete",
    "next_block",
    "select_matrix",
    "sort_blocks",
    "validate_blocks",
]
