"""
Pytest fixtures for the approval engine test suite.

Provides:
- A per-test database (file-backed SQLite under tmp_path by default)
- Deterministic clock, in-memory company directory and engine settings
- Service, facade and test-data factories
- Structured log capture

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL).  Tables
  are created before and dropped after every test.
"""

import json
import logging
import os
from io import StringIO
from typing import Any

import pytest

from doa_config import EngineSettings
from doa_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from doa_kernel.domain.approval import (
    ApprovalBlock,
    Approver,
    ApproverType,
    DocumentRef,
    DocumentType,
)
from doa_kernel.domain.clock import DeterministicClock
from doa_kernel.domain.directory import InMemoryCompanyDirectory
from doa_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from doa_kernel.services.approval_service import ApprovalService
from doa_kernel.services.matrix_service import MatrixService
from doa_kernel.services.task_projector import TaskProjector
from doa_kernel.services.workflow_service import WorkflowService

COMPANY_ID = "company-acme"
OWNER_ID = "user-owner"
INITIATOR_ID = "user-initiator"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture doa_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, approval_service):
            approval_service.submit_for_approval(...)
            logs = captured_logs()
            assert any(r["message"] == "workflow_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("doa_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """Fresh schema for every test.

    SQLite is file-backed (not ``:memory:``) so that separate sessions see
    each other's commits and optimistic version checks really conflict.
    """
    db_url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'doa.db'}"
    eng = init_engine_from_url(db_url, echo=False)
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A session for service-level tests.  The test owns commit."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def directory() -> InMemoryCompanyDirectory:
    return InMemoryCompanyDirectory(
        owners={COMPANY_ID: OWNER_ID},
        members={COMPANY_ID: [OWNER_ID, INITIATOR_ID]},
    )


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def projector(session, clock, settings) -> TaskProjector:
    return TaskProjector(session, clock, settings.tasks)


@pytest.fixture
def matrix_service(session, directory, clock, settings, projector) -> MatrixService:
    return MatrixService(session, directory, clock, settings.defaults, projector)


@pytest.fixture
def workflow_service(session, matrix_service, projector, clock) -> WorkflowService:
    return WorkflowService(session, matrix_service, projector, clock)


@pytest.fixture
def approval_service(session_factory, directory, clock, settings) -> ApprovalService:
    return ApprovalService(session_factory, directory, clock, settings)


# =============================================================================
# Test data factories
# =============================================================================


def block(level: int, *approvers: str, requires_all: bool = True,
          min_approvals: int | None = None) -> ApprovalBlock:
    """Build an ApprovalBlock of user approvers."""
    return ApprovalBlock(
        level=level,
        approvers=tuple(
            Approver(type=ApproverType.USER, value=a, label=a) for a in approvers
        ),
        requires_all=requires_all,
        min_approvals=min_approvals,
    )


@pytest.fixture
def create_matrix(approval_service, clock):
    """Factory: persist an active matrix through the facade.

    Advances the clock after each matrix so "newest" ordering is strict.
    """

    def _create(
        *blocks: ApprovalBlock,
        document_type: DocumentType = DocumentType.ORG_CHART,
        company_id: str = COMPANY_ID,
        name: str = "Test Matrix",
        **options: Any,
    ):
        matrix = approval_service.create_matrix(
            company_id, name, document_type, list(blocks), OWNER_ID, **options,
        )
        clock.advance(1)
        return matrix

    return _create


@pytest.fixture
def make_document():
    """Factory: a DocumentRef with sensible defaults."""

    def _make(
        doc_id: str = "doc-1",
        document_type: DocumentType = DocumentType.ORG_CHART,
        title: str = "Q3 Org Chart",
        amount=None,
    ) -> DocumentRef:
        return DocumentRef(id=doc_id, type=document_type, title=title, amount=amount)

    return _make
