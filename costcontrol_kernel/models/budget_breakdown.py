"""
SQLAlchemy ORM model for per-(project, category) budget breakdowns.

Invariants enforced
-------------------
* (project_id, category) is unique.  Two reconciliations racing to create
  the same row lazily collide on this constraint; the loser retries.
* ``budgeted`` is written only by the budget planning service.
  Reconciliation writes only ``actual``, ``committed``, ``variance`` and
  ``variance_percentage``.
* Rows are never deleted by reconciliation; a category whose last item
  disappears is reset to zero.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costcontrol_kernel.db.base import TrackedBase
from costcontrol_kernel.domain.dtos import BudgetBreakdownRecord


class BudgetBreakdownModel(TrackedBase):
    """Budgeted vs. actual vs. committed spend for one project category."""

    __tablename__ = "budget_breakdowns"

    __table_args__ = (
        UniqueConstraint("project_id", "category", name="uq_budget_breakdown_category"),
        Index("idx_budget_breakdown_project", "project_id"),
    )

    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("cost_control_projects.id"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    budgeted: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    actual: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    committed: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    variance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    variance_percentage: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    def to_dto(self) -> BudgetBreakdownRecord:
        return BudgetBreakdownRecord(
            id=self.id,
            project_id=self.project_id,
            category=self.category,
            budgeted=self.budgeted,
            actual=self.actual,
            committed=self.committed,
            variance=self.variance,
            variance_percentage=self.variance_percentage,
        )

    def __repr__(self) -> str:
        return f"<BudgetBreakdownModel project={self.project_id} {self.category}>"
