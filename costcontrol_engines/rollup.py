"""
costcontrol_engines.rollup -- Category rollup of a project's cost ledger.

Responsibility:
    Group a project's cost items by category and sum their amounts into
    two buckets by status: ``paid`` -> actual, ``planned``/``committed``
    -> committed.  Derive the per-category breakdown figures (variance,
    variance percentage) from a budgeted figure and those totals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costcontrol_kernel domain values, db types and
    exceptions.  Consumed by ReconciliationService.

Invariants enforced:
    - Status bucketing: an item contributes to exactly one of actual /
      committed, never both.
    - Order independence: amounts are quantized to cents before summing,
      so the result depends only on the (category, status, amount) tuples.
    - Categories with no items are NOT synthesized; the orchestrator
      zeroes existing breakdown rows itself.

Failure modes:
    - NegativeAmountError for a negative amount (never clamped or skipped).
    - UnknownCategoryError / UnknownStatusError for out-of-domain values.

Usage:
    from costcontrol_engines.rollup import compute_category_totals, derive_breakdown

    totals = compute_category_totals(snapshots)
    figures = derive_breakdown(
        CostCategory.MATERIALS, Decimal("10000"), totals[CostCategory.MATERIALS],
    )
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from costcontrol_engines.tracer import traced_engine
from costcontrol_kernel.db.types import ZERO, round_money
from costcontrol_kernel.domain.dtos import CostItemSnapshot
from costcontrol_kernel.domain.values import (
    CostCategory,
    parse_category,
    parse_status,
    percentage,
)
from costcontrol_kernel.exceptions import NegativeAmountError


@dataclass(frozen=True)
class CategoryTotals:
    """Sums for one category of a project's ledger."""

    category: CostCategory
    actual: Decimal
    committed: Decimal
    item_count: int = 0

    @classmethod
    def zero(cls, category: CostCategory) -> CategoryTotals:
        return cls(category=category, actual=ZERO, committed=ZERO, item_count=0)


@dataclass(frozen=True)
class BreakdownFigures:
    """Derived figures for one budget breakdown row."""

    category: CostCategory
    budgeted: Decimal
    actual: Decimal
    committed: Decimal
    variance: Decimal
    variance_percentage: Decimal


@traced_engine("category_rollup", "1.0")
def compute_category_totals(
    items: Iterable[CostItemSnapshot],
) -> dict[CostCategory, CategoryTotals]:
    """
    Sum cost items per category, bucketed by status.

    Args:
        items: All cost items of one project, any status, any category.
            May be a lazy iterator; it is consumed exactly once.

    Returns:
        One CategoryTotals per category present in ``items``, keyed and
        ordered by the CostCategory declaration order.

    Raises:
        NegativeAmountError: An item carries a negative amount.
        UnknownCategoryError: An item carries an unknown category.
        UnknownStatusError: An item carries an unknown status.
    """
    actual: dict[CostCategory, Decimal] = {}
    committed: dict[CostCategory, Decimal] = {}
    counts: dict[CostCategory, int] = {}

    for item in items:
        item_id = str(item.id)
        category = parse_category(item.category, item_id)
        status = parse_status(item.status, item_id)
        if item.amount < 0:
            raise NegativeAmountError(str(item.amount), item_id)
        amount = round_money(item.amount)

        counts[category] = counts.get(category, 0) + 1
        actual.setdefault(category, ZERO)
        committed.setdefault(category, ZERO)
        if status.is_actual:
            actual[category] += amount
        else:
            committed[category] += amount

    return {
        category: CategoryTotals(
            category=category,
            actual=actual[category],
            committed=committed[category],
            item_count=counts[category],
        )
        for category in CostCategory
        if category in counts
    }


def derive_breakdown(
    category: CostCategory,
    budgeted: Decimal,
    totals: CategoryTotals,
) -> BreakdownFigures:
    """
    Combine an external budgeted figure with ledger totals.

    variance = budgeted - actual
    variance_percentage = (actual - budgeted) / budgeted * 100, or 0 when
    nothing is budgeted.
    """
    budgeted = round_money(budgeted)
    return BreakdownFigures(
        category=category,
        budgeted=budgeted,
        actual=totals.actual,
        committed=totals.committed,
        variance=budgeted - totals.actual,
        variance_percentage=percentage(totals.actual - budgeted, budgeted),
    )
