"""
Data Transfer Objects for the cost ledger, budget breakdowns and projects.

Frozen dataclasses returned by selectors and services.  They never carry
ORM state, so callers may keep them after the session is closed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from costcontrol_kernel.domain.values import CostCategory, CostItemStatus


@dataclass(frozen=True)
class CostItemSnapshot:
    """
    The slice of a cost item the rollup needs, exactly as stored.

    category and status are raw strings so that a corrupted row surfaces as
    InvalidDataError in the rollup instead of failing silently on load.
    """

    id: UUID
    category: str
    status: str
    amount: Decimal


@dataclass(frozen=True)
class CostItemRecord:
    """A stored cost item."""

    id: UUID
    project_id: UUID
    category: CostCategory
    status: CostItemStatus
    amount: Decimal
    item_date: date
    description: str = ""
    source: str = "manual"
    source_id: str | None = None
    invoice_number: str | None = None
    supplier_name: str | None = None
    approved_by: str | None = None


@dataclass(frozen=True)
class BudgetBreakdownRecord:
    """A stored per-(project, category) budget breakdown row."""

    id: UUID
    project_id: UUID
    category: str
    budgeted: Decimal
    actual: Decimal
    committed: Decimal
    variance: Decimal
    variance_percentage: Decimal


@dataclass(frozen=True)
class ProjectRecord:
    """A cost-controlled project with its reconciled aggregates."""

    id: UUID
    project_code: str
    project_name: str
    total_budget: Decimal
    status: str = "active"
    client_name: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    total_actual_cost: Decimal = Decimal("0")
    total_committed_cost: Decimal = Decimal("0")
    gross_profit: Decimal = Decimal("0")
    gross_profit_margin: Decimal = Decimal("0")
    budget_variance: Decimal = Decimal("0")
    budget_variance_percentage: Decimal = Decimal("0")
    version: int = 0
    last_reconciled_at: datetime | None = None


@dataclass(frozen=True)
class CostItemFilter:
    """Criteria for listing ledger entries; None means "any"."""

    search: str | None = None
    category: CostCategory | None = None
    status: CostItemStatus | None = None
    date_from: date | None = None
    date_to: date | None = None


@dataclass(frozen=True)
class LedgerSummary:
    """Totals over a (possibly filtered) set of cost items."""

    item_count: int
    planned_amount: Decimal
    committed_amount: Decimal
    paid_amount: Decimal

    @property
    def total_amount(self) -> Decimal:
        return self.planned_amount + self.committed_amount + self.paid_amount


@dataclass(frozen=True)
class ConsistencyReport:
    """Comparison of a project's stored totals with its breakdown rows."""

    project_id: UUID
    recorded_total_actual: Decimal
    breakdown_actual_sum: Decimal
    recorded_total_committed: Decimal
    breakdown_committed_sum: Decimal
    breakdown_count: int

    @property
    def is_consistent(self) -> bool:
        return (
            self.recorded_total_actual == self.breakdown_actual_sum
            and self.recorded_total_committed == self.breakdown_committed_sum
        )
