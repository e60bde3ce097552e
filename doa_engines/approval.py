"""
doa_engines.approval -- Pure approval rule evaluation engine.

Responsibility:
    Evaluate approval matrices against workflow state: validate block
    structure, locate the block for a level, decide whether a user may act,
    count approvals and decide level completion, and pick the matrix that
    governs a document amount.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import doa_kernel/domain/ types.

Invariants enforced:
    - Block levels are unique and contiguous starting at 1.
    - ``min_approvals`` never exceeds the number of approvers.
    - A level is complete iff (requires_all and every listed approver
      approved) or (not requires_all and approvals >= min_approvals,
      defaulting to 1).
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - ``validate_blocks`` returns problems instead of raising; services
      translate a non-empty result into ``InvalidMatrixError``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from doa_kernel.domain.approval import (
    ApprovalBlock,
    ApprovalDecision,
    ApprovalMatrix,
    Decision,
    MatrixStatus,
)


def validate_blocks(
    blocks: Sequence[ApprovalBlock],
    status: MatrixStatus = MatrixStatus.ACTIVE,
) -> list[str]:
    """Return every structural problem with ``blocks`` (empty list = valid).

    Draft matrices may have no blocks yet; any other status needs at least
    one.
    """
    problems: list[str] = []
    if not blocks:
        if status != MatrixStatus.DRAFT:
            problems.append("matrix must define at least one approval block")
        return problems

    levels = sorted(b.level for b in blocks)
    if len(set(levels)) != len(levels):
        problems.append(f"block levels must be unique, got {levels}")
    elif levels != list(range(1, len(levels) + 1)):
        problems.append(f"block levels must be contiguous from 1, got {levels}")

    for block in blocks:
        if not block.approvers:
            problems.append(f"level {block.level} has no approvers")
            continue
        ids = block.approver_ids
        if len(set(ids)) != len(ids):
            problems.append(f"level {block.level} lists an approver more than once")
        if not block.requires_all and block.min_approvals is not None:
            if block.min_approvals < 1:
                problems.append(f"level {block.level} min_approvals must be >= 1")
            elif block.min_approvals > len(block.approvers):
                problems.append(
                    f"level {block.level} min_approvals ({block.min_approvals}) "
                    f"exceeds approver count ({len(block.approvers)})"
                )
    return problems


def sort_blocks(blocks: Iterable[ApprovalBlock]) -> tuple[ApprovalBlock, ...]:
    return tuple(sorted(blocks, key=lambda b: b.level))


def find_block(
    blocks: Sequence[ApprovalBlock], level: int,
) -> ApprovalBlock | None:
    """Return the block at ``level``, or None if the matrix has no such level."""
    for block in blocks:
        if block.level == level:
            return block
    return None


def next_block(
    blocks: Sequence[ApprovalBlock], level: int,
) -> ApprovalBlock | None:
    """Return the block at ``level + 1``, or None when ``level`` is the last."""
    return find_block(blocks, level + 1)


def is_authorized(block: ApprovalBlock, user_id: str) -> bool:
    return user_id in block.approver_ids


def has_decided(
    decisions: Iterable[ApprovalDecision], user_id: str, level: int,
) -> bool:
    """True if ``user_id`` already recorded any decision at ``level``."""
    return any(d.user_id == user_id and d.level == level for d in decisions)


def count_approvals(
    decisions: Iterable[ApprovalDecision],
    level: int,
    approver_ids: Iterable[str] | None = None,
) -> int:
    """Count distinct approvers who approved at ``level``.

    When ``approver_ids`` is given, approvals from anyone else are ignored.
    """
    approved = {
        d.user_id
        for d in decisions
        if d.level == level and d.decision == Decision.APPROVED
    }
    if approver_ids is not None:
        approved &= set(approver_ids)
    return len(approved)


def is_level_complete(
    block: ApprovalBlock, decisions: Iterable[ApprovalDecision],
) -> bool:
    """Evaluate the completion rule for ``block`` against ``decisions``.

    Only approvals from listed approvers count.
    """
    approvals = count_approvals(decisions, block.level, block.approver_ids)
    if block.requires_all:
        return approvals == len(block.approvers)
    return approvals >= block.required_approvals


def amount_in_range(matrix: ApprovalMatrix, amount: Decimal | None) -> bool:
    """True if ``amount`` falls inside the matrix's inclusive amount range.

    A missing amount matches every matrix.
    """
    if amount is None:
        return True
    if matrix.min_amount is not None and amount < matrix.min_amount:
        return False
    if matrix.max_amount is not None and amount > matrix.max_amount:
        return False
    return True


def select_matrix(
    candidates: Iterable[ApprovalMatrix], amount: Decimal | None = None,
) -> ApprovalMatrix | None:
    """Pick the governing matrix among active candidates.

    Matrices whose range excludes ``amount`` are dropped.  Ranged matrices
    win over unranged ones; within each group the newest wins.
    """
    eligible = [
        m for m in candidates
        if m.status == MatrixStatus.ACTIVE and amount_in_range(m, amount)
    ]
    if not eligible:
        return None
    # Newest first, then stable-sort ranged ahead of unranged
    eligible.sort(key=lambda m: m.created_at, reverse=True)
    eligible.sort(key=lambda m: 0 if m.is_ranged else 1)
    return eligible[0]
