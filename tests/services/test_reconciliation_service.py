"""
Tests for ReconciliationService.

Covers:
- Worked scenarios A and B
- Sum consistency, idempotence, deletion reset, budgeted preservation
- Zero-budget projects
- Failure modes: unknown project, corrupted ledger rows, storage failures,
  timeouts (all-or-nothing, nothing partially written)
- Keyset-paginated ledger load
- reconcile_all batch report
- Structured log events
"""

from decimal import Decimal
from itertools import count
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from costcontrol_config.schema import ReconciliationSettings
from costcontrol_kernel.domain.values import CostCategory
from costcontrol_kernel.exceptions import (
    InvalidDataError,
    NegativeAmountError,
    ProjectNotFoundError,
    ReconciliationTimeoutError,
    StorageError,
    UnknownCategoryError,
    UnknownStatusError,
)
from costcontrol_kernel.models.cost_item import CostItemModel
from costcontrol_kernel.selectors.cost_item_selector import CostItemSelector
from costcontrol_kernel.services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    ReconciliationService,
)
from tests.helpers import TEST_ACTOR_ID, breakdowns_by_category, load_project


class TestScenarios:
    """Worked examples from a 10,000 budget project."""

    def test_scenario_a(self, reconciler, create_project, insert_item, read_session):
        project_id = create_project("10000")
        insert_item(project_id, "materials", "3000", "paid")
        insert_item(project_id, "materials", "1000", "committed")

        result = reconciler.reconcile(project_id)

        other = read_session()
        rows = breakdowns_by_category(other, project_id)
        assert set(rows) == {"materials"}
        materials = rows["materials"]
        assert materials.actual == Decimal("3000")
        assert materials.committed == Decimal("1000")
        # Lazily created row: nothing budgeted yet
        assert materials.budgeted == Decimal("0")

        project = load_project(other, project_id)
        assert project.total_actual_cost == Decimal("3000")
        assert project.total_committed_cost == Decimal("1000")
        assert project.gross_profit == Decimal("7000")
        assert project.gross_profit_margin == Decimal("70.0")
        assert project.budget_variance == Decimal("7000")
        assert project.budget_variance_percentage == Decimal("-70.0")

        assert result.attempts == 1
        assert result.item_count == 2
        assert result.aggregate.total_actual_cost == Decimal("3000")

    def test_scenario_a_with_budgeted_category(
        self, reconciler, create_project, insert_item, insert_breakdown, read_session,
    ):
        project_id = create_project("10000")
        insert_breakdown(project_id, "materials", budgeted="10000")
        insert_item(project_id, "materials", "3000", "paid")
        insert_item(project_id, "materials", "1000", "committed")

        reconciler.reconcile(project_id)

        materials = breakdowns_by_category(read_session(), project_id)["materials"]
        assert materials.budgeted == Decimal("10000")
        assert materials.variance == Decimal("7000")
        assert materials.variance_percentage == Decimal("-70.0")

    def test_scenario_b(self, reconciler, create_project, insert_item, read_session):
        project_id = create_project("10000")
        insert_item(project_id, "materials", "3000", "paid")
        insert_item(project_id, "materials", "1000", "committed")
        reconciler.reconcile(project_id)

        insert_item(project_id, "direct_labor", "2000", "paid")
        reconciler.reconcile(project_id)

        other = read_session()
        rows = breakdowns_by_category(other, project_id)
        assert set(rows) == {"materials", "direct_labor"}
        assert rows["direct_labor"].actual == Decimal("2000")

        project = load_project(other, project_id)
        assert project.total_actual_cost == Decimal("5000")
        assert project.gross_profit == Decimal("5000")
        assert project.gross_profit_margin == Decimal("50.0")


class TestInvariants:

    def test_sum_consistency(self, reconciler, create_project, insert_item, read_session):
        project_id = create_project("50000")
        for category, amount, status in [
            ("materials", "1200.50", "paid"),
            ("machinery", "800.25", "paid"),
            ("machinery", "99.99", "planned"),
            ("insurance", "300", "committed"),
            ("general_expenses", "0.01", "paid"),
        ]:
            insert_item(project_id, category, amount, status)

        reconciler.reconcile(project_id)

        other = read_session()
        rows = breakdowns_by_category(other, project_id)
        project = load_project(other, project_id)
        assert project.total_actual_cost == sum(r.actual for r in rows.values())
        assert project.total_committed_cost == sum(r.committed for r in rows.values())
        assert project.total_actual_cost == Decimal("2000.76")

    def test_idempotent(self, reconciler, create_project, insert_item, insert_breakdown, read_session):
        project_id = create_project("10000")
        insert_breakdown(project_id, "subcontracts", budgeted="4000")
        insert_item(project_id, "subcontracts", "1500", "paid")
        insert_item(project_id, "materials", "250", "planned")

        first = reconciler.reconcile(project_id)
        second = reconciler.reconcile(project_id)

        assert first.breakdowns == second.breakdowns
        assert first.aggregate == second.aggregate
        assert second.version == first.version + 1

        other = read_session()
        assert load_project(other, project_id).version == second.version

    def test_deleting_last_item_resets_category(
        self, session, reconciler, create_project, insert_item, read_session,
    ):
        project_id = create_project("10000")
        item_id = insert_item(project_id, "machinery", "700", "paid")
        insert_item(project_id, "materials", "100", "paid")
        reconciler.reconcile(project_id)

        session.delete(session.get(CostItemModel, item_id))
        session.commit()
        reconciler.reconcile(project_id)

        other = read_session()
        rows = breakdowns_by_category(other, project_id)
        assert "machinery" in rows
        assert rows["machinery"].actual == Decimal("0")
        assert rows["machinery"].committed == Decimal("0")
        assert load_project(other, project_id).total_actual_cost == Decimal("100")

    def test_stale_breakdown_without_items_is_reset(
        self, reconciler, create_project, insert_breakdown, read_session,
    ):
        project_id = create_project("1000")
        insert_breakdown(project_id, "insurance", budgeted="200", actual="999", committed="50")

        reconciler.reconcile(project_id)

        insurance = breakdowns_by_category(read_session(), project_id)["insurance"]
        assert insurance.budgeted == Decimal("200")
        assert insurance.actual == Decimal("0")
        assert insurance.committed == Decimal("0")
        assert insurance.variance == Decimal("200")
        assert insurance.variance_percentage == Decimal("-100")

    def test_backward_status_change_recomputes_from_current_status(
        self, session, reconciler, create_project, insert_item, read_session,
    ):
        project_id = create_project("1000")
        item_id = insert_item(project_id, "materials", "400", "paid")
        reconciler.reconcile(project_id)

        session.get(CostItemModel, item_id).status = "planned"
        session.commit()
        reconciler.reconcile(project_id)

        materials = breakdowns_by_category(read_session(), project_id)["materials"]
        assert materials.actual == Decimal("0")
        assert materials.committed == Decimal("400")

    def test_project_without_items(self, reconciler, create_project):
        project_id = create_project("10000")

        result = reconciler.reconcile(project_id)

        assert result.breakdowns == ()
        assert result.aggregate.gross_profit == Decimal("10000")
        assert result.aggregate.gross_profit_margin == Decimal("100")

    def test_other_projects_untouched(self, reconciler, create_project, insert_item, read_session):
        project_id = create_project("1000")
        bystander_id = create_project("1000")
        insert_item(project_id, "materials", "10", "paid")
        insert_item(bystander_id, "materials", "20", "paid")

        reconciler.reconcile(project_id)

        other = read_session()
        assert breakdowns_by_category(other, bystander_id) == {}
        assert load_project(other, bystander_id).version == 0


class TestZeroBudget:

    def test_zero_budget_project(self, reconciler, create_project, insert_item, read_session):
        project_id = create_project("0")
        insert_item(project_id, "materials", "500", "paid")

        reconciler.reconcile(project_id)

        other = read_session()
        project = load_project(other, project_id)
        assert project.gross_profit == Decimal("-500")
        assert project.gross_profit_margin == Decimal("0")
        assert project.budget_variance_percentage == Decimal("0")
        assert breakdowns_by_category(other, project_id)["materials"].variance_percentage == Decimal("0")


class TestFailures:
    """Every failure leaves the stored aggregates untouched."""

    def test_unknown_project(self, reconciler):
        with pytest.raises(ProjectNotFoundError):
            reconciler.reconcile(uuid4())

    def test_negative_amount_in_ledger(self, reconciler, create_project, insert_item, read_session):
        project_id = create_project("1000")
        insert_item(project_id, "materials", "100", "paid")
        bad_id = insert_item(project_id, "materials", "-5", "paid")

        with pytest.raises(NegativeAmountError) as exc_info:
            reconciler.reconcile(project_id)

        assert isinstance(exc_info.value, InvalidDataError)
        assert exc_info.value.cost_item_id == str(bad_id)
        other = read_session()
        assert breakdowns_by_category(other, project_id) == {}
        assert load_project(other, project_id).version == 0

    def test_unknown_category_in_ledger(self, reconciler, create_project, insert_item):
        project_id = create_project("1000")
        insert_item(project_id, "other", "100", "paid")

        with pytest.raises(UnknownCategoryError):
            reconciler.reconcile(project_id)

    def test_unknown_status_in_ledger(self, reconciler, create_project, insert_item):
        project_id = create_project("1000")
        insert_item(project_id, "materials", "100", "invoiced")

        with pytest.raises(UnknownStatusError):
            reconciler.reconcile(project_id)

    def test_unknown_category_in_breakdowns(self, reconciler, create_project, insert_breakdown):
        project_id = create_project("1000")
        insert_breakdown(project_id, "other", budgeted="10")

        with pytest.raises(UnknownCategoryError):
            reconciler.reconcile(project_id)

    def test_duplicate_breakdown_categories(
        self, reconciler, create_project, insert_item, insert_breakdown, read_session,
    ):
        project_id = create_project("1000")
        insert_breakdown(project_id, "materials", budgeted="100")
        insert_breakdown(project_id, "Materials", budgeted="50", actual="70")
        insert_item(project_id, "materials", "30", "paid")

        with pytest.raises(InvalidDataError, match="Duplicate breakdown rows"):
            reconciler.reconcile(project_id)

        other = read_session()
        assert breakdowns_by_category(other, project_id)["Materials"].actual == Decimal("70")
        assert load_project(other, project_id).version == 0

    def test_storage_failure_on_write_rolls_back(
        self, reconciler, create_project, insert_item, insert_breakdown, read_session, monkeypatch,
    ):
        project_id = create_project("1000")
        insert_breakdown(project_id, "materials", budgeted="500", actual="1")
        insert_item(project_id, "materials", "300", "paid")
        insert_item(project_id, "machinery", "50", "paid")

        def fail(*args, **kwargs):
            raise OperationalError("UPDATE cost_control_projects", {}, Exception("disk I/O error"))

        monkeypatch.setattr(ReconciliationService, "_persist_aggregate", fail)

        with pytest.raises(StorageError) as exc_info:
            reconciler.reconcile(project_id)

        assert not isinstance(exc_info.value, ReconciliationTimeoutError)
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert exc_info.value.operation == "reconcile"
        assert "disk I/O error" in exc_info.value.reason

        # Breakdown updates were flushed before the failure; none is visible.
        rows = breakdowns_by_category(read_session(), project_id)
        assert set(rows) == {"materials"}
        assert rows["materials"].actual == Decimal("1")

    def test_storage_failure_on_read(self, reconciler, create_project, monkeypatch):
        project_id = create_project("1000")

        def fail(self, project_id, page_size=500):
            raise OperationalError("SELECT cost_items", {}, Exception("connection lost"))

        monkeypatch.setattr(CostItemSelector, "iter_project_items", fail)

        with pytest.raises(StorageError):
            reconciler.reconcile(project_id)

    def test_service_usable_after_failure(
        self, reconciler, create_project, insert_item, session, read_session,
    ):
        project_id = create_project("1000")
        bad_id = insert_item(project_id, "materials", "-1", "paid")
        with pytest.raises(NegativeAmountError):
            reconciler.reconcile(project_id)

        session.get(CostItemModel, bad_id).amount = Decimal("1")
        session.commit()
        reconciler.reconcile(project_id)

        assert load_project(read_session(), project_id).total_actual_cost == Decimal("1")


class TestTimeout:

    def test_deadline_already_passed(self, session, deterministic_clock, create_project, read_session):
        project_id = create_project("1000")
        ticks = count(0, 10)
        reconciler = ReconciliationService(
            session, clock=deterministic_clock, timer=lambda: next(ticks),
        )

        with pytest.raises(ReconciliationTimeoutError) as exc_info:
            reconciler.reconcile(project_id, timeout=5)

        assert isinstance(exc_info.value, StorageError)
        assert not isinstance(exc_info.value, InvalidDataError)
        assert exc_info.value.timeout_seconds == 5
        assert exc_info.value.code == "RECONCILIATION_TIMEOUT"
        assert load_project(read_session(), project_id).version == 0

    def test_deadline_passed_before_commit(
        self, session, deterministic_clock, create_project, insert_item, read_session,
    ):
        project_id = create_project("1000")
        insert_item(project_id, "materials", "100", "paid")
        ticks = iter([0, 1, 2, 3, 100])
        reconciler = ReconciliationService(
            session, clock=deterministic_clock, timer=lambda: next(ticks),
        )

        with pytest.raises(ReconciliationTimeoutError):
            reconciler.reconcile(project_id, timeout=10)

        other = read_session()
        assert breakdowns_by_category(other, project_id) == {}
        project = load_project(other, project_id)
        assert project.version == 0
        assert project.total_actual_cost == Decimal("0")

    def test_default_timeout_from_settings(self, session, create_project):
        project_id = create_project("1000")
        ticks = iter([0, 1, 2, 3, 4])
        reconciler = ReconciliationService(
            session,
            settings=ReconciliationSettings(timeout_seconds=3.5),
            timer=lambda: next(ticks),
        )

        with pytest.raises(ReconciliationTimeoutError) as exc_info:
            reconciler.reconcile(project_id)

        assert exc_info.value.timeout_seconds == 3.5


class TestLedgerLoad:

    def test_paginated_load_sees_every_item(self, session, create_project, insert_item):
        project_id = create_project("1000")
        for _ in range(7):
            insert_item(project_id, "materials", "1.10", "paid")
        reconciler = ReconciliationService(
            session, settings=ReconciliationSettings(page_size=2),
        )

        result = reconciler.reconcile(project_id)

        assert result.item_count == 7
        assert result.aggregate.total_actual_cost == Decimal("7.70")


class TestBookkeeping:

    def test_last_reconciled_at_from_clock(
        self, reconciler, deterministic_clock, create_project, read_session,
    ):
        project_id = create_project("1000")
        deterministic_clock.advance(3600)

        reconciler.reconcile(project_id)

        stamped = load_project(read_session(), project_id).last_reconciled_at
        assert stamped.replace(tzinfo=None) == deterministic_clock.now().replace(tzinfo=None)

    def test_lazy_rows_record_actor(self, reconciler, create_project, insert_item, read_session):
        project_id = create_project("1000")
        insert_item(project_id, "materials", "1", "paid")
        insert_item(project_id, "machinery", "1", "paid")

        reconciler.reconcile(project_id, actor_id=TEST_ACTOR_ID)

        rows = breakdowns_by_category(read_session(), project_id)
        assert {row.created_by_id for row in rows.values()} == {TEST_ACTOR_ID}

    def test_lazy_rows_without_actor_use_system_actor(
        self, reconciler, create_project, insert_item, read_session,
    ):
        project_id = create_project("1000")
        insert_item(project_id, "materials", "1", "paid")

        reconciler.reconcile(project_id)

        materials = breakdowns_by_category(read_session(), project_id)["materials"]
        assert materials.created_by_id == SYSTEM_ACTOR_ID

    def test_breakdowns_returned_in_category_order(self, reconciler, create_project, insert_item):
        project_id = create_project("1000")
        insert_item(project_id, "indirect_costs", "1", "paid")
        insert_item(project_id, "materials", "1", "paid")

        result = reconciler.reconcile(project_id)

        assert [f.category for f in result.breakdowns] == [
            CostCategory.MATERIALS,
            CostCategory.INDIRECT_COSTS,
        ]


class TestReconcileAll:

    def test_failures_do_not_stop_the_batch(self, reconciler, create_project, insert_item, read_session):
        good_id = create_project("1000", code="A-001")
        bad_id = create_project("1000", code="B-002")
        insert_item(good_id, "materials", "10", "paid")
        insert_item(bad_id, "materials", "-10", "paid")

        report = reconciler.reconcile_all()

        assert report.succeeded == [good_id]
        assert set(report.failed) == {bad_id}
        assert isinstance(report.failed[bad_id], NegativeAmountError)
        assert not report.all_succeeded
        assert report.project_count == 2
        assert load_project(read_session(), good_id).total_actual_cost == Decimal("10")

    def test_empty_database(self, reconciler):
        report = reconciler.reconcile_all()

        assert report.all_succeeded
        assert report.project_count == 0


class TestLogging:

    def test_started_and_committed_events(self, reconciler, create_project, insert_item, captured_logs):
        project_id = create_project("1000")
        insert_item(project_id, "materials", "10", "paid")

        reconciler.reconcile(project_id)

        logs = captured_logs()
        started = [r for r in logs if r["message"] == "reconciliation_started"]
        committed = [r for r in logs if r["message"] == "reconciliation_committed"]
        assert len(started) == 1
        assert len(committed) == 1
        assert committed[0]["project_id"] == str(project_id)
        assert committed[0]["attempts"] == 1
        assert committed[0]["total_actual_cost"] == "10.00"

    def test_engine_traces_emitted(self, reconciler, create_project, captured_logs):
        project_id = create_project("1000")

        reconciler.reconcile(project_id)

        engines = {
            r["engine_name"] for r in captured_logs() if r["message"] == "COST_ENGINE_TRACE"
        }
        assert engines == {"category_rollup", "project_aggregate"}
