"""
SQLAlchemy ORM model for cost ledger entries.

Responsibility
--------------
Durable append/update/delete storage of individual cost items.  The
ledger has no knowledge of aggregates; ``CostLedgerService`` triggers
reconciliation after every write that changes amount, category or status.

Invariants enforced
-------------------
* ``project_id`` never changes after creation.
* ``category`` and ``status`` are stored as plain strings; the closed
  vocabularies are enforced on write by the ledger service and re-checked
  on read by the rollup engine.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from costcontrol_kernel.db.base import TrackedBase
from costcontrol_kernel.domain.dtos import CostItemRecord
from costcontrol_kernel.domain.values import parse_category, parse_status


class CostItemModel(TrackedBase):
    """
    One cost charged to a project and category.

    Guarantees:
        - Belongs to exactly one ``CostControlProjectModel``.
        - ``amount`` is stored at Numeric(38,9); values are written
          quantized to cents.
    """

    __tablename__ = "cost_items"

    __table_args__ = (
        Index("idx_cost_item_project", "project_id"),
        Index("idx_cost_item_project_category", "project_id", "category"),
        Index("idx_cost_item_date", "item_date"),
        Index("idx_cost_item_status", "status"),
    )

    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("cost_control_projects.id"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal]
    item_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")
    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def to_dto(self) -> CostItemRecord:
        """
        Raises:
            UnknownCategoryError, UnknownStatusError: If the stored category
                or status is outside the closed sets.
        """
        item_key = str(self.id)
        return CostItemRecord(
            id=self.id,
            project_id=self.project_id,
            category=parse_category(self.category, item_key),
            status=parse_status(self.status, item_key),
            amount=self.amount,
            item_date=self.item_date,
            description=self.description,
            source=self.source,
            source_id=self.source_id,
            invoice_number=self.invoice_number,
            supplier_name=self.supplier_name,
            approved_by=self.approved_by,
        )

    def __repr__(self) -> str:
        return f"<CostItemModel project={self.project_id} {self.category} {self.amount} [{self.status}]>"
