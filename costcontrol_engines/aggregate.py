"""
costcontrol_engines.aggregate -- Project-level financial aggregate.

Responsibility:
    Compute total actual cost, total committed cost, gross profit, gross
    profit margin, budget variance and budget variance percentage from a
    project's total budget and its complete set of breakdown figures.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - total_actual_cost is the sum of ``actual`` over ALL breakdowns
      passed in; the caller must pass the complete, already-updated set.
    - gross_profit and budget_variance come from the same subtraction so
      they can never disagree.
    - A zero total budget yields 0% margin and 0% variance through an
      explicit branch.

Failure modes:
    - InvalidBudgetError if the total budget is negative.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from costcontrol_engines.tracer import traced_engine
from costcontrol_kernel.db.types import ZERO, round_money
from costcontrol_kernel.domain.values import percentage
from costcontrol_kernel.exceptions import InvalidBudgetError


class BreakdownTotals(Protocol):
    """Anything carrying per-category actual and committed sums."""

    @property
    def actual(self) -> Decimal: ...

    @property
    def committed(self) -> Decimal: ...


@dataclass(frozen=True)
class ProjectAggregate:
    """Project-level totals derived from the breakdown rows."""

    total_budget: Decimal
    total_actual_cost: Decimal
    total_committed_cost: Decimal
    gross_profit: Decimal
    gross_profit_margin: Decimal
    budget_variance: Decimal
    budget_variance_percentage: Decimal


@traced_engine("project_aggregate", "1.0")
def compute_project_aggregate(
    total_budget: Decimal,
    breakdowns: Iterable[BreakdownTotals],
) -> ProjectAggregate:
    """
    Fold a project's breakdowns into its aggregate figures.

    Args:
        total_budget: The project's planned total budget.
        breakdowns: Every breakdown of the project, after this
            reconciliation's updates.

    Returns:
        ProjectAggregate with all money quantized to cents and percentages
        to four decimal places.

    Raises:
        InvalidBudgetError: If total_budget is negative.
    """
    if total_budget < 0:
        raise InvalidBudgetError(str(total_budget), "total budget cannot be negative")
    total_budget = round_money(total_budget)

    total_actual = ZERO
    total_committed = ZERO
    for breakdown in breakdowns:
        total_actual += breakdown.actual
        total_committed += breakdown.committed
    total_actual = round_money(total_actual)
    total_committed = round_money(total_committed)

    remaining = total_budget - total_actual

    return ProjectAggregate(
        total_budget=total_budget,
        total_actual_cost=total_actual,
        total_committed_cost=total_committed,
        gross_profit=remaining,
        gross_profit_margin=percentage(remaining, total_budget),
        budget_variance=remaining,
        budget_variance_percentage=percentage(total_actual - total_budget, total_budget),
    )
