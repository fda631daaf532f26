"""
ReconciliationService -- Recompute a project's budget breakdowns and
aggregate figures from its current cost ledger.

Responsibility:
    Reload every cost item of a project, run the category rollup, write
    ``actual`` / ``committed`` / ``variance`` / ``variance_percentage``
    on each breakdown row, fold the updated breakdowns into the project
    aggregate and write it back.  All of it commits as one transaction.

Architecture position:
    Kernel > Services -- imperative shell around the pure calculators in
    ``costcontrol_engines``.  Called by CostLedgerService after every
    ledger write that changes amount, category or status, by
    BudgetPlanningService after budget changes, and by the safety-net
    script ``scripts/reconcile_projects.py``.

    Unlike most services, ReconciliationService owns its transaction:
    it commits on success and rolls back on every failure, because a
    lost race can only be retried from a fresh transaction.  Call it on
    a session with no pending changes.

Invariants enforced:
    - Sum consistency: after a successful call the project's
      ``total_actual_cost`` equals the sum of ``actual`` over all of its
      breakdown rows, and ``total_committed_cost`` the sum of
      ``committed``.  Both are written in the same transaction.
    - Full recompute: breakdowns are rebuilt from the current ledger,
      never patched with deltas.  A category with no remaining items is
      reset to zero, its row is kept.
    - ``budgeted`` is never written here.
    - Serialisation per project: the project row is read ``FOR UPDATE``
      (blocks a second reconciler on PostgreSQL) and the final write is a
      compare-and-swap on ``version``.  Different projects never share a
      lock.

Failure modes:
    - ProjectNotFoundError: unknown project id.
    - InvalidDataError (NegativeAmountError, UnknownCategoryError,
      UnknownStatusError): a stored row is out of domain, or two
      breakdown rows name the same category.  Nothing is written; the row
      is never clamped or skipped.
    - ConcurrencyConflictError: the compare-and-swap was lost (or a
      concurrent reconciler created the same breakdown row) on every
      one of ``max_attempts`` attempts.
    - ReconciliationTimeoutError: the caller's deadline passed, or the
      database cancelled a statement on lock/statement timeout.
    - StorageError: any other database failure, chained with ``from``.

Audit relevance:
    ``reconciliation_started`` / ``reconciliation_committed`` bracket
    each call with the project id bound in LogContext.  Lost races are
    logged as ``reconciliation_conflict_retry`` with the attempt number.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from costcontrol_config.schema import ReconciliationSettings
from costcontrol_engines.aggregate import ProjectAggregate, compute_project_aggregate
from costcontrol_engines.rollup import (
    BreakdownFigures,
    CategoryTotals,
    compute_category_totals,
    derive_breakdown,
)
from costcontrol_kernel.db.engine import is_postgres
from costcontrol_kernel.db.types import ZERO
from costcontrol_kernel.domain.clock import Clock, SystemClock
from costcontrol_kernel.domain.values import CostCategory, parse_category
from costcontrol_kernel.exceptions import (
    ConcurrencyConflictError,
    CostControlError,
    InvalidDataError,
    ProjectNotFoundError,
    ReconciliationTimeoutError,
    StorageError,
)
from costcontrol_kernel.logging_config import LogContext, get_logger
from costcontrol_kernel.models.budget_breakdown import BudgetBreakdownModel
from costcontrol_kernel.models.project import CostControlProjectModel
from costcontrol_kernel.selectors.budget_selector import BudgetSelector
from costcontrol_kernel.selectors.cost_item_selector import CostItemSelector

logger = get_logger("services.reconciliation")

# Recorded as creator of breakdown rows created lazily without an actor.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")

# PostgreSQL SQLSTATEs raised by lock_timeout / statement_timeout.
_PG_TIMEOUT_CODES = frozenset({"55P03", "57014"})


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of one successful reconciliation."""

    project_id: UUID
    breakdowns: tuple[BreakdownFigures, ...]
    aggregate: ProjectAggregate
    attempts: int
    item_count: int
    version: int


@dataclass
class BatchReconciliationReport:
    """Per-project outcome of ``reconcile_all``."""

    succeeded: list[UUID] = field(default_factory=list)
    failed: dict[UUID, CostControlError] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def project_count(self) -> int:
        return len(self.succeeded) + len(self.failed)


class ReconciliationService:
    """
    Orchestrates category rollup and project aggregate for one project.

    Contract:
        ``reconcile(project_id)`` reads current state and recomputes; it
        is idempotent, and the last successful call reflects every ledger
        write committed before it started.

    Non-goals:
        - Does NOT write ``budgeted`` or ``total_budget``.
        - Does NOT validate ledger writes; CostLedgerService does that.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: ReconciliationSettings | None = None,
        timer: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._settings = settings or ReconciliationSettings()
        self._timer = timer
        self._sleep = sleep
        self._items = CostItemSelector(session)

    def reconcile(
        self,
        project_id: UUID,
        timeout: float | None = None,
        actor_id: UUID | None = None,
    ) -> ReconciliationResult:
        """
        Recompute and persist breakdowns and aggregate for ``project_id``.

        Args:
            project_id: The project to reconcile.
            timeout: Seconds before the call gives up without writing.
                Defaults to ``reconciliation.timeout_seconds``.
            actor_id: Recorded as ``updated_by_id`` on written rows.

        Returns:
            ReconciliationResult with the persisted figures.

        Raises:
            ProjectNotFoundError, InvalidDataError, StorageError,
            ReconciliationTimeoutError, ConcurrencyConflictError.
        """
        timeout = self._settings.timeout_seconds if timeout is None else timeout
        deadline = self._timer() + timeout
        max_attempts = self._settings.max_attempts

        with LogContext.bind(project_id=str(project_id)):
            logger.info(
                "reconciliation_started",
                extra={"timeout_seconds": timeout, "max_attempts": max_attempts},
            )
            attempt = 0
            while True:
                attempt += 1
                try:
                    result = self._attempt(project_id, attempt, deadline, timeout, actor_id)
                except ConcurrencyConflictError as exc:
                    self.session.rollback()
                    if attempt >= max_attempts:
                        logger.error(
                            "reconciliation_conflict_exhausted",
                            extra={"attempts": attempt},
                        )
                        raise ConcurrencyConflictError(
                            "CostControlProject", str(project_id), attempts=attempt,
                        ) from exc
                    logger.warning(
                        "reconciliation_conflict_retry",
                        extra={"attempt": attempt, "reason": str(exc)},
                    )
                    self._sleep(self._settings.retry_backoff_seconds * attempt)
                    continue
                except Exception:
                    self.session.rollback()
                    raise

                logger.info(
                    "reconciliation_committed",
                    extra={
                        "attempts": result.attempts,
                        "item_count": result.item_count,
                        "breakdown_count": len(result.breakdowns),
                        "total_actual_cost": result.aggregate.total_actual_cost,
                        "total_committed_cost": result.aggregate.total_committed_cost,
                        "version": result.version,
                    },
                )
                return result

    def reconcile_all(self, timeout: float | None = None) -> BatchReconciliationReport:
        """
        Reconcile every project independently.

        A failing project is recorded in the report and does not stop the
        others.  ``timeout`` applies to each project separately.
        """
        project_ids = BudgetSelector(self.session).list_project_ids()
        self.session.rollback()

        report = BatchReconciliationReport()
        for project_id in project_ids:
            try:
                self.reconcile(project_id, timeout=timeout)
            except CostControlError as exc:
                logger.warning(
                    "reconciliation_batch_project_failed",
                    extra={"project_id": str(project_id), "error_code": exc.code},
                )
                report.failed[project_id] = exc
            else:
                report.succeeded.append(project_id)

        logger.info(
            "reconciliation_batch_completed",
            extra={
                "project_count": report.project_count,
                "failed_count": len(report.failed),
            },
        )
        return report

    # ------------------------------------------------------------------
    # One attempt = one transaction
    # ------------------------------------------------------------------

    def _attempt(
        self,
        project_id: UUID,
        attempt: int,
        deadline: float,
        timeout: float,
        actor_id: UUID | None,
    ) -> ReconciliationResult:
        session = self.session
        try:
            self._check_deadline(project_id, deadline, timeout)
            self._apply_database_timeouts(deadline)

            project = session.execute(
                select(CostControlProjectModel)
                .where(CostControlProjectModel.id == project_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if project is None:
                raise ProjectNotFoundError(str(project_id))
            loaded_version = project.version
            total_budget = project.total_budget

            existing = self._load_breakdowns(project_id)

            totals = compute_category_totals(
                self._items.iter_project_items(project_id, self._settings.page_size)
            )
            self._check_deadline(project_id, deadline, timeout)

            figures = self._write_breakdowns(project_id, existing, totals, actor_id)
            session.flush()

            aggregate = compute_project_aggregate(total_budget, figures)
            self._check_deadline(project_id, deadline, timeout)

            self._persist_aggregate(project_id, loaded_version, aggregate, actor_id)
            # The CAS bypasses the identity map; reload lazily after commit.
            session.expire(project)
            self._check_deadline(project_id, deadline, timeout)
            session.commit()
        except (IntegrityError, StaleDataError) as exc:
            raise ConcurrencyConflictError("CostControlProject", str(project_id)) from exc
        except OperationalError as exc:
            if getattr(exc.orig, "pgcode", None) in _PG_TIMEOUT_CODES:
                raise ReconciliationTimeoutError(str(project_id), timeout) from exc
            raise StorageError("reconcile", str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise StorageError("reconcile", str(exc)) from exc

        return ReconciliationResult(
            project_id=project_id,
            breakdowns=tuple(figures),
            aggregate=aggregate,
            attempts=attempt,
            item_count=sum(t.item_count for t in totals.values()),
            version=loaded_version + 1,
        )

    def _load_breakdowns(self, project_id: UUID) -> dict[CostCategory, BudgetBreakdownModel]:
        rows = self.session.scalars(
            select(BudgetBreakdownModel)
            .where(BudgetBreakdownModel.project_id == project_id)
            .execution_options(populate_existing=True)
        ).all()
        existing: dict[CostCategory, BudgetBreakdownModel] = {}
        for row in rows:
            category = parse_category(row.category)
            if category in existing:
                raise InvalidDataError(
                    f"Duplicate breakdown rows for category {category.value!r}: "
                    f"{existing[category].category!r} and {row.category!r}"
                )
            existing[category] = row
        logger.debug("breakdowns_loaded", extra={"breakdown_count": len(rows)})
        return existing

    def _write_breakdowns(
        self,
        project_id: UUID,
        existing: dict[CostCategory, BudgetBreakdownModel],
        totals: dict[CostCategory, CategoryTotals],
        actor_id: UUID | None,
    ) -> list[BreakdownFigures]:
        """Update (or lazily create) one row per category in existing | totals."""
        figures: list[BreakdownFigures] = []
        for category in CostCategory:
            row = existing.get(category)
            category_totals = totals.get(category)
            if row is None and category_totals is None:
                continue
            if category_totals is None:
                category_totals = CategoryTotals.zero(category)

            budgeted = row.budgeted if row is not None else ZERO
            figure = derive_breakdown(category, budgeted, category_totals)

            if row is None:
                row = BudgetBreakdownModel(
                    project_id=project_id,
                    category=category.value,
                    budgeted=ZERO,
                    created_by_id=actor_id or SYSTEM_ACTOR_ID,
                )
                self.session.add(row)
                logger.debug("breakdown_created", extra={"category": category.value})

            row.actual = figure.actual
            row.committed = figure.committed
            row.variance = figure.variance
            row.variance_percentage = figure.variance_percentage
            if actor_id is not None:
                row.updated_by_id = actor_id
            figures.append(figure)
        return figures

    def _persist_aggregate(
        self,
        project_id: UUID,
        loaded_version: int,
        aggregate: ProjectAggregate,
        actor_id: UUID | None,
    ) -> None:
        """Compare-and-swap the aggregate fields onto the project row."""
        values = dict(
            total_actual_cost=aggregate.total_actual_cost,
            total_committed_cost=aggregate.total_committed_cost,
            gross_profit=aggregate.gross_profit,
            gross_profit_margin=aggregate.gross_profit_margin,
            budget_variance=aggregate.budget_variance,
            budget_variance_percentage=aggregate.budget_variance_percentage,
            version=loaded_version + 1,
            last_reconciled_at=self._clock.now(),
        )
        if actor_id is not None:
            values["updated_by_id"] = actor_id

        result = self.session.execute(
            update(CostControlProjectModel)
            .where(
                CostControlProjectModel.id == project_id,
                CostControlProjectModel.version == loaded_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError("CostControlProject", str(project_id))

    def _check_deadline(self, project_id: UUID, deadline: float, timeout: float) -> None:
        if self._timer() >= deadline:
            logger.warning("reconciliation_deadline_exceeded", extra={"timeout_seconds": timeout})
            raise ReconciliationTimeoutError(str(project_id), timeout)

    def _apply_database_timeouts(self, deadline: float) -> None:
        """Bound lock waits and statements by the remaining time (PostgreSQL)."""
        if not is_postgres(self.session):
            return
        remaining_ms = str(max(1, int((deadline - self._timer()) * 1000)))
        self.session.execute(
            select(
                func.set_config("lock_timeout", remaining_ms, True),
                func.set_config("statement_timeout", remaining_ms, True),
            )
        )
