"""
Tests for the pure approval rule evaluation engine.

Tests cover:
- validate_blocks: contiguity, uniqueness, empty levels, min_approvals bounds
- is_level_complete: requires_all vs. quorum, distinct counting, outsiders
- find_block / next_block / is_authorized / has_decided
- select_matrix: amount ranges, ranged-over-unranged, newest wins
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

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
from doa_kernel.domain.approval import (
    ApprovalBlock,
    ApprovalDecision,
    ApprovalMatrix,
    Approver,
    ApproverType,
    Decision,
    DocumentType,
    MatrixStatus,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def make_block(
    level: int,
    *approvers: str,
    requires_all: bool = True,
    min_approvals: int | None = None,
) -> ApprovalBlock:
    return ApprovalBlock(
        level=level,
        approvers=tuple(Approver(type=ApproverType.USER, value=a) for a in approvers),
        requires_all=requires_all,
        min_approvals=min_approvals,
    )


def approved(user_id: str, level: int = 1) -> ApprovalDecision:
    return ApprovalDecision(
        user_id=user_id, level=level, decision=Decision.APPROVED, timestamp=T0,
    )


def declined(user_id: str, level: int = 1) -> ApprovalDecision:
    return ApprovalDecision(
        user_id=user_id, level=level, decision=Decision.DECLINED,
        timestamp=T0, comments="no",
    )


def make_matrix(
    created_offset: int = 0,
    status: MatrixStatus = MatrixStatus.ACTIVE,
    min_amount: Decimal | None = None,
    max_amount: Decimal | None = None,
) -> ApprovalMatrix:
    created = T0 + timedelta(seconds=created_offset)
    return ApprovalMatrix(
        id=uuid4(),
        company_id="c1",
        name="m",
        document_type=DocumentType.PURCHASE_ORDER,
        status=status,
        approval_blocks=(make_block(1, "owner"),),
        created_by="owner",
        created_at=created,
        updated_at=created,
        min_amount=min_amount,
        max_amount=max_amount,
    )


# =========================================================================
# validate_blocks
# =========================================================================


class TestValidateBlocks:

    def test_valid_multi_level(self):
        blocks = [make_block(1, "a", "b"), make_block(2, "c")]
        assert validate_blocks(blocks) == []

    def test_empty_rejected_for_active(self):
        assert validate_blocks([]) != []

    def test_empty_allowed_for_draft(self):
        assert validate_blocks([], MatrixStatus.DRAFT) == []

    def test_gap_in_levels(self):
        problems = validate_blocks([make_block(1, "a"), make_block(3, "b")])
        assert any("contiguous" in p for p in problems)

    def test_must_start_at_one(self):
        problems = validate_blocks([make_block(2, "a")])
        assert any("contiguous" in p for p in problems)

    def test_duplicate_levels(self):
        problems = validate_blocks([make_block(1, "a"), make_block(1, "b")])
        assert any("unique" in p for p in problems)

    def test_level_without_approvers(self):
        problems = validate_blocks([make_block(1)])
        assert problems == ["level 1 has no approvers"]

    def test_approver_listed_twice(self):
        problems = validate_blocks([make_block(1, "a", "a")])
        assert any("more than once" in p for p in problems)

    def test_min_approvals_above_count(self):
        blocks = [make_block(1, "a", "b", requires_all=False, min_approvals=3)]
        assert any("exceeds" in p for p in validate_blocks(blocks))

    def test_min_approvals_below_one(self):
        blocks = [make_block(1, "a", requires_all=False, min_approvals=0)]
        assert any(">= 1" in p for p in validate_blocks(blocks))

    def test_min_approvals_ignored_when_requires_all(self):
        blocks = [make_block(1, "a", requires_all=True, min_approvals=9)]
        assert validate_blocks(blocks) == []

    def test_sort_blocks_orders_by_level(self):
        blocks = sort_blocks([make_block(2, "b"), make_block(1, "a")])
        assert [b.level for b in blocks] == [1, 2]


# =========================================================================
# Level completion
# =========================================================================


class TestLevelCompletion:

    def test_requires_all_incomplete_until_everyone_approves(self):
        block = make_block(1, "a", "b")
        assert not is_level_complete(block, [approved("a")])
        assert is_level_complete(block, [approved("a"), approved("b")])

    def test_quorum_reached(self):
        block = make_block(1, "x", "y", "z", requires_all=False, min_approvals=2)
        assert not is_level_complete(block, [approved("x")])
        assert is_level_complete(block, [approved("x"), approved("y")])

    def test_quorum_defaults_to_one(self):
        block = make_block(1, "x", "y", requires_all=False)
        assert is_level_complete(block, [approved("y")])

    def test_other_level_decisions_ignored(self):
        block = make_block(2, "a")
        assert not is_level_complete(block, [approved("a", level=1)])

    def test_declines_do_not_count(self):
        block = make_block(1, "a", "b", requires_all=False, min_approvals=1)
        assert not is_level_complete(block, [declined("a")])

    def test_duplicate_approvals_counted_once(self):
        block = make_block(1, "a", "b", requires_all=False, min_approvals=2)
        assert not is_level_complete(block, [approved("a"), approved("a")])
        assert count_approvals([approved("a"), approved("a")], 1) == 1

    def test_outsider_approvals_do_not_count(self):
        block = make_block(1, "a", "b", requires_all=False, min_approvals=2)
        assert not is_level_complete(block, [approved("a"), approved("intruder")])
        decisions = [approved("a"), approved("intruder")]
        assert count_approvals(decisions, 1) == 2
        assert count_approvals(decisions, 1, block.approver_ids) == 1


# =========================================================================
# Lookup helpers
# =========================================================================


class TestLookups:

    def test_find_and_next_block(self):
        blocks = (make_block(1, "a"), make_block(2, "b"))
        assert find_block(blocks, 2).approver_ids == ("b",)
        assert find_block(blocks, 3) is None
        assert next_block(blocks, 1).level == 2
        assert next_block(blocks, 2) is None

    def test_is_authorized(self):
        block = make_block(1, "a", "b")
        assert is_authorized(block, "b")
        assert not is_authorized(block, "c")

    def test_has_decided_is_per_level(self):
        decisions = [approved("a", level=1)]
        assert has_decided(decisions, "a", 1)
        assert not has_decided(decisions, "a", 2)
        assert has_decided([declined("b")], "b", 1)


# =========================================================================
# Matrix selection
# =========================================================================


class TestSelectMatrix:

    def test_no_candidates(self):
        assert select_matrix([]) is None

    def test_newest_unranged_wins(self):
        old, new = make_matrix(0), make_matrix(10)
        assert select_matrix([old, new]) is new

    def test_inactive_ignored(self):
        draft = make_matrix(10, status=MatrixStatus.DRAFT)
        active = make_matrix(0)
        assert select_matrix([draft, active]) is active

    def test_ranged_preferred_when_amount_fits(self):
        unranged = make_matrix(20)
        ranged = make_matrix(0, min_amount=Decimal("1000"), max_amount=Decimal("5000"))
        assert select_matrix([unranged, ranged], Decimal("2500")) is ranged

    def test_ranged_excluded_when_amount_outside(self):
        unranged = make_matrix(0)
        ranged = make_matrix(10, max_amount=Decimal("100"))
        assert select_matrix([unranged, ranged], Decimal("500")) is unranged

    @pytest.mark.parametrize("amount,expected", [
        (Decimal("1000"), True),
        (Decimal("5000"), True),
        (Decimal("999.99"), False),
        (Decimal("5000.01"), False),
        (None, True),
    ])
    def test_range_bounds_inclusive(self, amount, expected):
        matrix = make_matrix(min_amount=Decimal("1000"), max_amount=Decimal("5000"))
        assert amount_in_range(matrix, amount) is expected

    def test_no_amount_still_prefers_ranged(self):
        unranged = make_matrix(10)
        ranged = make_matrix(0, min_amount=Decimal("0"))
        assert select_matrix([unranged, ranged]) is ranged
