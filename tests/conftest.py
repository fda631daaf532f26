"""
Pytest fixtures for the cost control test suite.

Provides:
- A file-backed SQLite database per test, so that several sessions see
  each other's commits (needed for the conflict/retry tests)
- Services wired with a deterministic clock
- Factories for projects and raw ledger rows
- Captured structured logs

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL.  Tests marked ``postgres``
  (true multi-threaded races) run only when it points at PostgreSQL.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from costcontrol_config.schema import PlanningSettings, ReconciliationSettings
from costcontrol_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from costcontrol_kernel.domain.clock import DeterministicClock
from costcontrol_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from costcontrol_kernel.models.budget_breakdown import BudgetBreakdownModel
from costcontrol_kernel.models.cost_item import CostItemModel
from costcontrol_kernel.models.project import CostControlProjectModel
from costcontrol_kernel.services.budget_planning_service import BudgetPlanningService
from costcontrol_kernel.services.cost_ledger_service import CostLedgerService
from costcontrol_kernel.services.reconciliation_service import ReconciliationService
from tests.helpers import TEST_ACTOR_ID


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


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
    Capture costcontrol_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, reconciler):
            reconciler.reconcile(project_id)
            logs = captured_logs()
            assert any(r["message"] == "reconciliation_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("costcontrol_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str | None:
    return os.environ.get("DATABASE_URL")


def requires_postgres() -> bool:
    url = get_database_url()
    return bool(url) and url.startswith("postgresql")


@pytest.fixture
def session_factory(tmp_path):
    """Session factory over a fresh SQLite file with all tables created."""
    init_engine_from_url(f"sqlite:///{tmp_path / 'costcontrol.db'}")
    create_tables()
    yield get_session_factory()
    reset_engine()


@pytest.fixture
def pg_session_factory():
    """Session factory over PostgreSQL; skips unless DATABASE_URL is set."""
    if not requires_postgres():
        pytest.skip("DATABASE_URL does not point at PostgreSQL")
    init_engine_from_url(get_database_url())
    drop_tables()
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def read_session(session_factory):
    """
    Open a brand-new session for reading committed state.

    Usage::

        other = read_session()
        project = other.get(CostControlProjectModel, project_id)
    """
    opened: list[Session] = []

    def _open() -> Session:
        s = session_factory()
        opened.append(s)
        return s

    yield _open

    for s in opened:
        s.close()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def reconciliation_settings() -> ReconciliationSettings:
    return ReconciliationSettings(max_attempts=3, timeout_seconds=30.0, retry_backoff_seconds=0.0)


@pytest.fixture
def reconciler(session, deterministic_clock, reconciliation_settings) -> ReconciliationService:
    return ReconciliationService(
        session,
        clock=deterministic_clock,
        settings=reconciliation_settings,
        sleep=lambda _seconds: None,
    )


@pytest.fixture
def ledger(session, reconciler) -> CostLedgerService:
    return CostLedgerService(session, reconciler)


@pytest.fixture
def planner(session, reconciler) -> BudgetPlanningService:
    return BudgetPlanningService(session, reconciler, PlanningSettings())


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def create_project(session):
    """
    Insert a project directly, with no breakdown rows.

    Returns the project id.
    """

    def _create(total_budget="10000", code: str | None = None) -> UUID:
        project = CostControlProjectModel(
            project_code=code or f"PRJ-{uuid4().hex[:8]}",
            project_name="Test project",
            total_budget=Decimal(total_budget),
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(project)
        session.commit()
        return project.id

    return _create


@pytest.fixture
def insert_item(session):
    """
    Insert a raw ledger row without validation or reconciliation.

    Used to set up ledger states, including corrupted ones.
    """

    def _insert(project_id: UUID, category: str, amount, status: str = "committed") -> UUID:
        item = CostItemModel(
            project_id=project_id,
            category=category,
            status=status,
            amount=Decimal(amount),
            item_date=date(2024, 3, 1),
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(item)
        session.commit()
        return item.id

    return _insert


@pytest.fixture
def insert_breakdown(session):
    """Insert a breakdown row carrying an external ``budgeted`` figure."""

    def _insert(project_id: UUID, category: str, budgeted="0", actual="0", committed="0") -> UUID:
        row = BudgetBreakdownModel(
            project_id=project_id,
            category=category,
            budgeted=Decimal(budgeted),
            actual=Decimal(actual),
            committed=Decimal(committed),
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(row)
        session.commit()
        return row.id

    return _insert

