"""
Tests for ApprovalService, the public facade.

Every call runs in its own committed transaction, so these tests observe
exactly what a caller of the engine would.

Covers:
- The two-level A,B -> C scenario ending in a decline
- The single-level quorum scenario (X, Y approve; Z's task closed)
- Task accounting and terminal immutability
- Rollback of a failed operation
- Matrix administration and query surface through the facade
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from doa_kernel.domain.approval import (
    Decision,
    DocumentType,
    MatrixStatus,
    TaskPriority,
    TaskType,
    WorkflowStatus,
)
from doa_kernel.exceptions import (
    CommentsRequiredError,
    MatrixInUseError,
    TaskNotFoundError,
    WorkflowAlreadyPendingError,
    WorkflowNotPendingError,
)
from tests.conftest import COMPANY_ID, INITIATOR_ID, OWNER_ID, block


def _requests(tasks):
    return [t for t in tasks if t.task_type is TaskType.APPROVAL_REQUEST]


def _response(tasks):
    (task,) = [t for t in tasks if t.task_type is TaskType.APPROVAL_RESPONSE]
    return task


class TestTwoLevelDeclineScenario:
    """Level 1 {A, B} requires all, level 2 {C}; C declines."""

    def test_full_walkthrough(self, approval_service, create_matrix, make_document, clock):
        create_matrix(block(1, "A", "B"), block(2, "C"))

        submitted = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        )
        wf_id = submitted.workflow.id
        assert submitted.workflow.current_level == 1
        assert len(submitted.tasks) == 3
        assert {t.user_id for t in _requests(submitted.tasks)} == {"A", "B"}
        assert _response(submitted.tasks).user_id == INITIATOR_ID

        clock.tick()
        after_a = approval_service.approve(COMPANY_ID, wf_id, "A")
        assert after_a.workflow.current_level == 1
        assert after_a.workflow.status is WorkflowStatus.PENDING
        assert len(after_a.workflow.decisions) == 1

        clock.tick()
        after_b = approval_service.approve(COMPANY_ID, wf_id, "B")
        assert after_b.level_completed is True
        assert after_b.workflow.current_level == 2
        assert [t.user_id for t in after_b.tasks] == ["C"]

        tasks = approval_service.get_workflow_tasks(wf_id)
        level_one = [t for t in _requests(tasks) if t.level == 1]
        assert len(level_one) == 2 and all(t.completed for t in level_one)

        clock.tick()
        declined = approval_service.decline(COMPANY_ID, wf_id, "C", "budget exceeded")
        assert declined.status is WorkflowStatus.DECLINED
        assert declined.completed_at == clock.now()

        tasks = approval_service.get_workflow_tasks(wf_id)
        c_task = next(t for t in tasks if t.user_id == "C")
        assert c_task.completed is True
        response = _response(tasks)
        assert response.priority is TaskPriority.HIGH
        assert "declined" in response.title.lower()
        assert "budget exceeded" in response.description
        assert response.completed is False


class TestQuorumScenario:
    """Single level {X, Y, Z}, requires_all false, min_approvals 2."""

    def test_two_of_three_approves(self, approval_service, create_matrix, make_document):
        create_matrix(
            block(1, "X", "Y", "Z", requires_all=False, min_approvals=2),
            document_type=DocumentType.JOB_OFFER,
        )
        doc = make_document("offer-9", DocumentType.JOB_OFFER, "Senior Engineer Offer")
        wf_id = approval_service.submit_for_approval(COMPANY_ID, doc, INITIATOR_ID).workflow.id

        first = approval_service.approve(COMPANY_ID, wf_id, "X")
        assert first.completed is False
        second = approval_service.approve(COMPANY_ID, wf_id, "Y")

        assert second.completed is True
        assert second.workflow.status is WorkflowStatus.APPROVED
        assert second.workflow.completed_at is not None
        tasks = approval_service.get_workflow_tasks(wf_id)
        z_task = next(t for t in tasks if t.user_id == "Z")
        assert z_task.completed is True
        assert "approved" in _response(tasks).title.lower()


class TestInvariants:

    def test_task_accounting_through_all_levels(
        self, approval_service, create_matrix, make_document,
    ):
        create_matrix(block(1, "a1", "a2"), block(2, "b1"), block(3, "c1", "c2", "c3"))
        wf_id = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow.id
        for user in ("a1", "a2", "b1", "c1", "c2", "c3"):
            result = approval_service.approve(COMPANY_ID, wf_id, user)
        assert result.completed is True

        tasks = approval_service.get_workflow_tasks(wf_id)
        completed_requests = [t for t in _requests(tasks) if t.completed]
        assert len(completed_requests) == 6
        assert len([t for t in tasks if t.task_type is TaskType.APPROVAL_RESPONSE]) == 1

    def test_terminal_workflow_unchanged_by_further_calls(
        self, approval_service, create_matrix, make_document,
    ):
        create_matrix(block(1, "a", "b"))
        wf_id = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow.id
        approval_service.decline(COMPANY_ID, wf_id, "a", "no")
        before = approval_service.get_workflow(COMPANY_ID, wf_id)

        with pytest.raises(WorkflowNotPendingError):
            approval_service.approve(COMPANY_ID, wf_id, "b")
        with pytest.raises(WorkflowNotPendingError):
            approval_service.decline(COMPANY_ID, wf_id, "b", "also no")

        assert approval_service.get_workflow(COMPANY_ID, wf_id) == before

    def test_failed_operation_rolls_back(
        self, approval_service, create_matrix, make_document,
    ):
        create_matrix(block(1, "a"))
        wf_id = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow.id
        with pytest.raises(CommentsRequiredError):
            approval_service.decline(COMPANY_ID, wf_id, "a", "")
        workflow = approval_service.get_workflow(COMPANY_ID, wf_id)
        assert workflow.decisions == ()
        assert workflow.version == 1

    def test_duplicate_submission_leaves_single_workflow(
        self, approval_service, create_matrix, make_document,
    ):
        create_matrix(block(1, "a"))
        approval_service.submit_for_approval(COMPANY_ID, make_document(), INITIATOR_ID)
        with pytest.raises(WorkflowAlreadyPendingError):
            approval_service.submit_for_approval(COMPANY_ID, make_document(), INITIATOR_ID)
        workflows = approval_service.list_document_workflows(
            COMPANY_ID, DocumentType.ORG_CHART, "doc-1",
        )
        assert len(workflows) == 1


class TestLogContext:

    def test_operation_binds_company_and_actor(
        self, approval_service, create_matrix, make_document, captured_logs,
    ):
        create_matrix(block(1, "a"))
        wf_id = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow.id
        approval_service.approve(COMPANY_ID, wf_id, "a")

        (record,) = [r for r in captured_logs() if r["message"] == "workflow_approved"]
        assert record["company_id"] == COMPANY_ID
        assert record["actor_id"] == "a"
        assert record["workflow_id"] == str(wf_id)


class TestQueries:

    def test_latest_workflow_for_document(
        self, approval_service, create_matrix, make_document, clock,
    ):
        create_matrix(block(1, "a"))
        first = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow
        approval_service.decline(COMPANY_ID, first.id, "a", "try again")
        clock.advance(60)
        second = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow

        latest = approval_service.get_workflow_for_document(
            COMPANY_ID, DocumentType.ORG_CHART, "doc-1",
        )
        assert latest.id == second.id
        assert approval_service.get_workflow_for_document(
            COMPANY_ID, DocumentType.ORG_CHART, "never-submitted",
        ) is None

    def test_approval_history_spans_workflows(
        self, approval_service, create_matrix, make_document, clock,
    ):
        create_matrix(block(1, "a"))
        first = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow
        clock.tick()
        approval_service.decline(COMPANY_ID, first.id, "a", "missing roles")
        clock.tick()
        second = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow
        clock.tick()
        approval_service.approve(COMPANY_ID, second.id, "a")

        history = approval_service.get_approval_history(
            COMPANY_ID, DocumentType.ORG_CHART, "doc-1",
        )
        assert [(h.workflow_id, h.decision) for h in history] == [
            (first.id, Decision.DECLINED),
            (second.id, Decision.APPROVED),
        ]
        assert history[0].comments == "missing roles"

    def test_list_company_workflows_by_status(
        self, approval_service, create_matrix, make_document, clock,
    ):
        create_matrix(block(1, "a"))
        done = approval_service.submit_for_approval(
            COMPANY_ID, make_document("doc-1"), INITIATOR_ID,
        ).workflow
        approval_service.approve(COMPANY_ID, done.id, "a")
        clock.tick()
        open_wf = approval_service.submit_for_approval(
            COMPANY_ID, make_document("doc-2"), INITIATOR_ID,
        ).workflow

        pending = approval_service.list_company_workflows(COMPANY_ID, WorkflowStatus.PENDING)
        assert [w.id for w in pending] == [open_wf.id]
        assert len(approval_service.list_company_workflows(COMPANY_ID)) == 2

    def test_user_worklist_and_completion(
        self, approval_service, create_matrix, make_document,
    ):
        create_matrix(block(1, "a"))
        wf_id = approval_service.submit_for_approval(
            COMPANY_ID, make_document(), INITIATOR_ID,
        ).workflow.id
        approval_service.approve(COMPANY_ID, wf_id, "a")

        (notice,) = approval_service.get_user_tasks(COMPANY_ID, INITIATOR_ID)
        assert notice.title == "Organization Chart Approved - Q3 Org Chart"

        done = approval_service.complete_task(COMPANY_ID, notice.id)
        assert done.completed is True
        assert approval_service.get_user_tasks(COMPANY_ID, INITIATOR_ID) == ()
        assert len(approval_service.get_user_tasks(
            COMPANY_ID, INITIATOR_ID, include_completed=True,
        )) == 1
        assert approval_service.get_task(COMPANY_ID, notice.id).completed is True

    def test_get_task_unknown(self, approval_service, db_engine):
        with pytest.raises(TaskNotFoundError):
            approval_service.get_task(COMPANY_ID, uuid4())

    def test_worklist_orders_by_priority(
        self, approval_service, create_matrix, make_document, clock,
    ):
        # Owner gets a high-priority request (default matrix) and review tasks
        approval_service.initialize_company(COMPANY_ID)
        clock.tick()
        create_matrix(block(1, OWNER_ID), document_type=DocumentType.INVOICE)
        approval_service.submit_for_approval(
            COMPANY_ID, make_document("inv-1", DocumentType.INVOICE, "INV-1"), INITIATOR_ID,
        )

        worklist = approval_service.get_user_tasks(COMPANY_ID, OWNER_ID)
        assert worklist[0].task_type is TaskType.APPROVAL_REQUEST
        assert all(t.priority is TaskPriority.HIGH for t in worklist)
        created = [t.created_at for t in worklist]
        assert created == sorted(created, reverse=True)


class TestMatrixAdministration:

    def test_resolve_creates_and_persists_default(self, approval_service):
        matrix = approval_service.resolve_matrix(COMPANY_ID, DocumentType.TERMINATION_NOTICE)
        assert approval_service.get_active_matrix(
            COMPANY_ID, DocumentType.TERMINATION_NOTICE,
        ).id == matrix.id

    def test_update_archive_delete(self, approval_service, create_matrix):
        matrix = create_matrix(block(1, "a"), document_type=DocumentType.CONTRACT)
        renamed = approval_service.update_matrix(COMPANY_ID, matrix.id, name="Contracts")
        assert renamed.name == "Contracts"

        archived = approval_service.archive_matrix(COMPANY_ID, matrix.id)
        assert archived.status is MatrixStatus.ARCHIVED
        assert approval_service.list_matrices(
            COMPANY_ID, status=MatrixStatus.ACTIVE,
        ) == ()

        approval_service.delete_matrix(COMPANY_ID, matrix.id)
        assert approval_service.list_matrices(COMPANY_ID) == ()

    def test_delete_in_use_refused(self, approval_service, create_matrix, make_document):
        matrix = create_matrix(block(1, "a"))
        approval_service.submit_for_approval(COMPANY_ID, make_document(), INITIATOR_ID)
        with pytest.raises(MatrixInUseError):
            approval_service.delete_matrix(COMPANY_ID, matrix.id)
        assert approval_service.get_matrix(COMPANY_ID, matrix.id).id == matrix.id

    def test_ranged_matrix_routes_large_amounts(
        self, approval_service, create_matrix, make_document,
    ):
        create_matrix(block(1, "mgr"), document_type=DocumentType.PURCHASE_ORDER)
        create_matrix(
            block(1, "mgr"), block(2, "cfo"),
            document_type=DocumentType.PURCHASE_ORDER,
            min_amount=Decimal("10000"),
        )
        small = approval_service.submit_for_approval(
            COMPANY_ID,
            make_document("po-1", DocumentType.PURCHASE_ORDER, "Pens", Decimal("40")),
            INITIATOR_ID,
        )
        large = approval_service.submit_for_approval(
            COMPANY_ID,
            make_document("po-2", DocumentType.PURCHASE_ORDER, "Servers", Decimal("250000")),
            INITIATOR_ID,
        )
        assert approval_service.approve(COMPANY_ID, small.workflow.id, "mgr").completed
        assert not approval_service.approve(COMPANY_ID, large.workflow.id, "mgr").completed

    def test_initialize_company(self, approval_service, settings):
        result = approval_service.initialize_company(COMPANY_ID)
        assert len(result.matrices) == len(settings.defaults.document_types)
        review = approval_service.get_user_tasks(COMPANY_ID, OWNER_ID)
        assert {t.task_type for t in review} == {TaskType.REVIEW_DOA_MATRIX}
