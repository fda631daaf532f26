"""
BudgetPlanningService -- Put a project under cost control and set its
budgets.

Responsibility:
    The budget-setting side of project planning: create the project record
    with one breakdown row per category, and change ``budgeted`` figures or
    the project's ``total_budget`` later on.  These are the only writers
    of ``budgeted`` and ``total_budget``.

Architecture position:
    Kernel > Services.  Depends on ReconciliationService to refresh the
    derived figures after each change.

Invariants enforced:
    - Budgets are non-negative and quantized to cents.
    - Every budget change bumps the project ``version`` through the same
      compare-and-swap reconciliation uses.  A reconciliation that read
      the old budget therefore loses its race and recomputes.
    - On activation without explicit allocations the total budget is
      split evenly across the seven categories, rounded down to the
      cent, with the remainder on the last category.  The split always
      sums to ``total_budget`` exactly.

Failure modes:
    - InvalidBudgetError for negative or non-numeric budgets.
    - UnknownCategoryError for a category outside the closed set.
    - InvalidDataError for a duplicate project code.
    - ProjectNotFoundError for unknown project ids.
    - ConcurrencyConflictError if the project changed underneath the
      budget write.  Planning writes are not retried here.
    - StorageError for any other database failure.
    As with ledger writes, a failed reconciliation after the budget write
    is returned on the MutationResult instead of raised.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import ROUND_DOWN, Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from costcontrol_config.schema import PlanningSettings
from costcontrol_kernel.db.types import MONEY_QUANTUM, ZERO, round_money, to_decimal
from costcontrol_kernel.domain.dtos import ProjectRecord
from costcontrol_kernel.domain.values import CostCategory, parse_category
from costcontrol_kernel.exceptions import (
    ConcurrencyConflictError,
    CostControlError,
    InvalidBudgetError,
    InvalidDataError,
    ProjectNotFoundError,
    StorageError,
)
from costcontrol_kernel.logging_config import LogContext, get_logger
from costcontrol_kernel.models.budget_breakdown import BudgetBreakdownModel
from costcontrol_kernel.models.project import CostControlProjectModel
from costcontrol_kernel.selectors.budget_selector import BudgetSelector
from costcontrol_kernel.services.cost_ledger_service import MutationResult
from costcontrol_kernel.services.reconciliation_service import ReconciliationService

logger = get_logger("services.budget_planning")


def validate_budget(value: Decimal | int | str) -> Decimal:
    """
    Parse a budget figure and quantize it to cents.

    Raises:
        InvalidBudgetError: If the value is not a finite number or negative.
    """
    try:
        budget = to_decimal(value)
    except ValueError as exc:
        raise InvalidBudgetError(repr(value), str(exc)) from exc
    if budget < 0:
        raise InvalidBudgetError(str(budget), "budget cannot be negative")
    return round_money(budget)


def split_evenly(total_budget: Decimal) -> dict[CostCategory, Decimal]:
    """Split a budget across all categories; the last one takes the remainder."""
    categories = list(CostCategory)
    share = (total_budget / len(categories)).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)
    allocation = {category: share for category in categories[:-1]}
    allocation[categories[-1]] = total_budget - share * (len(categories) - 1)
    return allocation


class BudgetPlanningService:
    """Budget-setting API for project planning."""

    def __init__(
        self,
        session: Session,
        reconciler: ReconciliationService,
        settings: PlanningSettings | None = None,
    ):
        self.session = session
        self._reconciler = reconciler
        self._settings = settings or PlanningSettings()

    def activate_cost_control(
        self,
        project_code: str,
        project_name: str,
        total_budget: Decimal | int | str,
        actor_id: UUID,
        client_name: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        allocations: Mapping[CostCategory | str, Decimal | int | str] | None = None,
    ) -> MutationResult:
        """
        Create a cost-controlled project with a breakdown row per category.

        Args:
            allocations: Explicit ``budgeted`` per category.  Categories not
                listed start at zero.  When omitted, the total budget is
                split evenly (or left at zero if even splitting is
                disabled in the planning settings).

        Returns:
            MutationResult whose ``record`` is the reconciled ProjectRecord.
        """
        budget = validate_budget(total_budget)
        if not project_code or not project_code.strip():
            raise InvalidDataError("project_code must not be empty")
        if start_date and end_date and end_date < start_date:
            raise InvalidDataError(f"end_date {end_date} is before start_date {start_date}")

        if allocations is not None:
            budgeted = {category: ZERO for category in CostCategory}
            for category, value in allocations.items():
                budgeted[parse_category(category)] = validate_budget(value)
            allocated = sum(budgeted.values(), ZERO)
            if allocated > budget:
                logger.warning(
                    "allocations_exceed_total_budget",
                    extra={"project_code": project_code, "allocated": allocated, "total_budget": budget},
                )
        elif self._settings.even_split_on_activation:
            budgeted = split_evenly(budget)
        else:
            budgeted = {category: ZERO for category in CostCategory}

        try:
            project = CostControlProjectModel(
                project_code=project_code.strip(),
                project_name=project_name,
                client_name=client_name,
                start_date=start_date,
                end_date=end_date,
                total_budget=budget,
                created_by_id=actor_id,
            )
            self.session.add(project)
            self.session.flush()
            for category, amount in budgeted.items():
                self.session.add(
                    BudgetBreakdownModel(
                        project_id=project.id,
                        category=category.value,
                        budgeted=amount,
                        created_by_id=actor_id,
                    )
                )
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise InvalidDataError(f"Project code already exists: {project_code!r}") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError("activate_cost_control", str(exc)) from exc

        project_id = project.id
        with LogContext.bind(project_id=str(project_id), actor_id=str(actor_id)):
            logger.info(
                "cost_control_activated",
                extra={"project_code": project.project_code, "total_budget": budget},
            )
            return self._reconcile_after_write(project_id, actor_id)

    def set_category_budget(
        self,
        project_id: UUID,
        category: CostCategory | str,
        budgeted: Decimal | int | str,
        actor_id: UUID,
    ) -> MutationResult:
        """Write ``budgeted`` for one category (creating the row if needed)."""
        parsed_category = parse_category(category)
        amount = validate_budget(budgeted)

        with LogContext.bind(project_id=str(project_id), actor_id=str(actor_id)):
            try:
                project = self._lock_project(project_id)
                row = self.session.execute(
                    select(BudgetBreakdownModel)
                    .where(
                        BudgetBreakdownModel.project_id == project_id,
                        BudgetBreakdownModel.category == parsed_category.value,
                    )
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if row is None:
                    self.session.add(
                        BudgetBreakdownModel(
                            project_id=project_id,
                            category=parsed_category.value,
                            budgeted=amount,
                            created_by_id=actor_id,
                        )
                    )
                else:
                    row.budgeted = amount
                    row.updated_by_id = actor_id
                self.session.flush()
                self._bump_version(project, actor_id)
                self.session.commit()
            except (IntegrityError, StaleDataError) as exc:
                self.session.rollback()
                raise ConcurrencyConflictError("CostControlProject", str(project_id)) from exc
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StorageError("update_budget", str(exc)) from exc
            except CostControlError:
                self.session.rollback()
                raise

            logger.info(
                "category_budget_set",
                extra={"category": parsed_category.value, "budgeted": amount},
            )
            return self._reconcile_after_write(project_id, actor_id)

    def set_total_budget(
        self,
        project_id: UUID,
        total_budget: Decimal | int | str,
        actor_id: UUID,
    ) -> MutationResult:
        """Write the project's ``total_budget``."""
        budget = validate_budget(total_budget)

        with LogContext.bind(project_id=str(project_id), actor_id=str(actor_id)):
            try:
                project = self._lock_project(project_id)
                previous = project.total_budget
                self._bump_version(project, actor_id, total_budget=budget)
                self.session.commit()
            except (IntegrityError, StaleDataError) as exc:
                self.session.rollback()
                raise ConcurrencyConflictError("CostControlProject", str(project_id)) from exc
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StorageError("update_budget", str(exc)) from exc
            except CostControlError:
                self.session.rollback()
                raise

            logger.info(
                "total_budget_set",
                extra={"previous_total_budget": previous, "total_budget": budget},
            )
            return self._reconcile_after_write(project_id, actor_id)

    def _lock_project(self, project_id: UUID) -> CostControlProjectModel:
        project = self.session.execute(
            select(CostControlProjectModel)
            .where(CostControlProjectModel.id == project_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return project

    def _bump_version(
        self,
        project: CostControlProjectModel,
        actor_id: UUID,
        **values: Decimal,
    ) -> None:
        """Compare-and-swap ``version`` (plus any extra columns) on the project."""
        loaded_version = project.version
        result = self.session.execute(
            update(CostControlProjectModel)
            .where(
                CostControlProjectModel.id == project.id,
                CostControlProjectModel.version == loaded_version,
            )
            .values(version=loaded_version + 1, updated_by_id=actor_id, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError("CostControlProject", str(project.id))
        self.session.expire(project)

    def _reconcile_after_write(self, project_id: UUID, actor_id: UUID) -> MutationResult:
        reconciliation = None
        error: CostControlError | None = None
        try:
            reconciliation = self._reconciler.reconcile(project_id, actor_id=actor_id)
        except CostControlError as exc:
            logger.warning(
                "reconciliation_failed_after_write",
                extra={"error_code": exc.code, "error": str(exc)},
            )
            error = exc

        record: ProjectRecord | None = BudgetSelector(self.session).get_project(project_id)
        return MutationResult(
            record=record,
            reconciliation=reconciliation,
            reconciliation_error=error,
        )
