"""
Tests for TaskProjector: worklist tasks derived from workflow state.

Covers:
- Deterministic task ids and idempotent projection
- complete_task: idempotent, keeps the first completed_at, company scoped
- reproject: rebuilds lost tasks from persisted workflow state
"""

from uuid import uuid4

import pytest

from doa_kernel.domain.approval import DocumentRef, DocumentType, TaskType
from doa_kernel.exceptions import TaskNotFoundError
from doa_kernel.models import ApprovalTaskModel
from doa_kernel.selectors import TaskSelector
from doa_kernel.services.task_projector import (
    approver_task_id,
    initiator_task_id,
    review_task_id,
)
from tests.conftest import COMPANY_ID, INITIATOR_ID, OWNER_ID, block


@pytest.fixture
def submitted(matrix_service, workflow_service, clock):
    matrix = matrix_service.create_matrix(
        COMPANY_ID, "Two level", DocumentType.JOB_DESCRIPTION,
        [block(1, "alice", "bob"), block(2, "carol")], OWNER_ID,
    )
    clock.advance(1)
    result = workflow_service.submit(
        COMPANY_ID,
        DocumentRef(id="jd-1", type=DocumentType.JOB_DESCRIPTION, title="Engineer II"),
        INITIATOR_ID,
    )
    return matrix, result


class TestTaskIds:

    def test_ids_are_deterministic(self):
        wf_id = uuid4()
        assert approver_task_id(wf_id, 1, "alice") == approver_task_id(wf_id, 1, "alice")
        assert approver_task_id(wf_id, 1, "alice") != approver_task_id(wf_id, 2, "alice")
        assert initiator_task_id(wf_id) != approver_task_id(wf_id, 1, INITIATOR_ID)
        assert review_task_id("c1", wf_id) != review_task_id("c2", wf_id)

    def test_submission_tasks_use_derived_ids(self, submitted):
        _, result = submitted
        wf_id = result.workflow.id
        ids = {t.id for t in result.tasks}
        assert ids == {
            initiator_task_id(wf_id),
            approver_task_id(wf_id, 1, "alice"),
            approver_task_id(wf_id, 1, "bob"),
        }


class TestProjectionIdempotency:

    def test_open_level_twice_creates_nothing(self, projector, submitted):
        matrix, result = submitted
        again = projector.open_level(result.workflow, matrix.approval_blocks[0])
        assert again == ()

    def test_request_description_mentions_level(self, submitted):
        _, result = submitted
        request = next(t for t in result.tasks if t.user_id == "alice")
        assert "(approval level 1)" in request.description
        assert request.entity_id == "jd-1"
        assert request.entity_type == DocumentType.JOB_DESCRIPTION.value


class TestCompleteTask:

    def test_complete_is_idempotent(self, projector, submitted, clock):
        _, result = submitted
        task_id = initiator_task_id(result.workflow.id)

        first = projector.complete_task(COMPANY_ID, task_id)
        clock.advance(3600)
        second = projector.complete_task(COMPANY_ID, task_id)

        assert first.completed is True
        assert second.completed is True
        assert second.completed_at == first.completed_at

    def test_logs_completion_once(self, projector, submitted, captured_logs):
        _, result = submitted
        task_id = initiator_task_id(result.workflow.id)
        projector.complete_task(COMPANY_ID, task_id)
        projector.complete_task(COMPANY_ID, task_id)
        completed = [r for r in captured_logs() if r["message"] == "task_completed"]
        assert len(completed) == 1

    def test_unknown_task(self, projector):
        with pytest.raises(TaskNotFoundError):
            projector.complete_task(COMPANY_ID, uuid4())

    def test_other_company_task_hidden(self, projector, submitted):
        _, result = submitted
        with pytest.raises(TaskNotFoundError):
            projector.complete_task("intruder-co", initiator_task_id(result.workflow.id))


class TestReproject:

    def test_rebuilds_deleted_tasks(self, projector, workflow_service, submitted, session):
        matrix, result = submitted
        wf_id = result.workflow.id
        workflow_service.approve(COMPANY_ID, wf_id, "alice")
        session.delete(session.get(ApprovalTaskModel, approver_task_id(wf_id, 1, "alice")))
        session.delete(session.get(ApprovalTaskModel, approver_task_id(wf_id, 1, "bob")))
        session.flush()

        created = workflow_service.reproject_tasks(COMPANY_ID, wf_id)

        assert {t.user_id for t in created} == {"alice", "bob"}
        tasks = {t.user_id: t for t in TaskSelector(session).for_workflow(wf_id)}
        assert tasks["alice"].completed is True
        assert tasks["bob"].completed is False

    def test_noop_when_consistent(self, workflow_service, submitted):
        _, result = submitted
        assert workflow_service.reproject_tasks(COMPANY_ID, result.workflow.id) == ()

    def test_resolves_initiator_task_for_terminal_workflow(
        self, workflow_service, submitted, session,
    ):
        _, result = submitted
        wf_id = result.workflow.id
        workflow_service.decline(COMPANY_ID, wf_id, "bob", "needs a salary band")
        session.delete(session.get(ApprovalTaskModel, initiator_task_id(wf_id)))
        session.flush()

        workflow_service.reproject_tasks(COMPANY_ID, wf_id)

        response = TaskSelector(session).get(COMPANY_ID, initiator_task_id(wf_id))
        assert response.task_type is TaskType.APPROVAL_RESPONSE
        assert response.title == "Job Description Declined - Engineer II"
        assert response.description.endswith("Comments: needs a salary band")
        requests = [
            t for t in TaskSelector(session).for_workflow(wf_id)
            if t.task_type is TaskType.APPROVAL_REQUEST
        ]
        assert requests and all(t.completed for t in requests)
