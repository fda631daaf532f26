"""
SQLAlchemy ORM model for cost-controlled projects.

Responsibility
--------------
Persist the project record: its externally planned ``total_budget`` and
the aggregate fields owned by reconciliation (total actual cost, gross
profit, margin, budget variance).

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``version`` is the optimistic concurrency token.  Every write to the
  aggregate fields or to ``total_budget`` increments it through a
  compare-and-swap UPDATE; a writer that finds a different version than it
  read has lost a race and must start over.
* After a successful reconciliation ``total_actual_cost`` equals the sum
  of ``actual`` over this project's ``budget_breakdowns`` rows.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costcontrol_kernel.db.base import TrackedBase
from costcontrol_kernel.domain.dtos import ProjectRecord


class CostControlProjectModel(TrackedBase):
    """
    A project under cost control.

    Guarantees:
        - ``project_code`` is unique across all projects.
        - Aggregate fields are only written by ``ReconciliationService``.
    """

    __tablename__ = "cost_control_projects"

    __table_args__ = (
        UniqueConstraint("project_code", name="uq_cost_control_project_code"),
        Index("idx_cost_control_project_status", "status"),
    )

    project_code: Mapped[str] = mapped_column(String(50), nullable=False)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_budget: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    # Reconciliation-owned aggregates
    total_actual_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_committed_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    gross_profit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    gross_profit_margin: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    budget_variance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    budget_variance_percentage: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    version: Mapped[int] = mapped_column(nullable=False, default=0)
    last_reconciled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> ProjectRecord:
        return ProjectRecord(
            id=self.id,
            project_code=self.project_code,
            project_name=self.project_name,
            client_name=self.client_name,
            status=self.status,
            start_date=self.start_date,
            end_date=self.end_date,
            total_budget=self.total_budget,
            total_actual_cost=self.total_actual_cost,
            total_committed_cost=self.total_committed_cost,
            gross_profit=self.gross_profit,
            gross_profit_margin=self.gross_profit_margin,
            budget_variance=self.budget_variance,
            budget_variance_percentage=self.budget_variance_percentage,
            version=self.version,
            last_reconciled_at=self.last_reconciled_at,
        )

    def __repr__(self) -> str:
        return f"<CostControlProjectModel {self.project_code} v{self.version}>"
