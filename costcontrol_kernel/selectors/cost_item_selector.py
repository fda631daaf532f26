"""
Module: costcontrol_kernel.selectors.cost_item_selector
Responsibility: Read access to the cost ledger.  Streams a project's full
    item set for reconciliation and serves the filtered listings and totals
    behind the cost item screens.

Design note:
    ``iter_project_items`` uses keyset pagination on the primary key, so the
    memory held at once is bounded by ``page_size`` regardless of ledger
    size.  The consistency contract is unchanged: pages are read inside the
    caller's transaction.
"""

from __future__ import annotations

from collections.abc import Iterator
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, func, or_, select

from costcontrol_kernel.db.types import ZERO, round_money
from costcontrol_kernel.domain.dtos import (
    CostItemFilter,
    CostItemRecord,
    CostItemSnapshot,
    LedgerSummary,
)
from costcontrol_kernel.domain.values import CostItemStatus
from costcontrol_kernel.models.cost_item import CostItemModel
from costcontrol_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 500


def _escape_like(term: str) -> str:
    """Make LIKE wildcards in user input match literally (escape char is a backslash)."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CostItemSelector(BaseSelector):
    """Queries over ``cost_items``."""

    def get(self, cost_item_id: UUID) -> CostItemRecord | None:
        """Get one cost item, or None if it does not exist."""
        model = self.session.get(CostItemModel, cost_item_id, populate_existing=True)
        return model.to_dto() if model is not None else None

    def iter_project_items(
        self,
        project_id: UUID,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Iterator[CostItemSnapshot]:
        """
        Stream every cost item of a project as raw snapshots.

        Rows are fetched ``page_size`` at a time ordered by id; each page
        resumes after the last id of the previous one.  Values are passed
        through unvalidated so the rollup can reject bad rows.
        """
        last_id: UUID | None = None
        while True:
            stmt = (
                select(
                    CostItemModel.id,
                    CostItemModel.category,
                    CostItemModel.status,
                    CostItemModel.amount,
                )
                .where(CostItemModel.project_id == project_id)
                .order_by(CostItemModel.id)
                .limit(page_size)
            )
            if last_id is not None:
                stmt = stmt.where(CostItemModel.id > last_id)

            rows = self.session.execute(stmt).all()
            for row in rows:
                yield CostItemSnapshot(
                    id=row.id,
                    category=row.category,
                    status=row.status,
                    amount=row.amount,
                )
            if len(rows) < page_size:
                return
            last_id = rows[-1].id

    def list_items(
        self,
        project_id: UUID,
        criteria: CostItemFilter | None = None,
    ) -> list[CostItemRecord]:
        """List a project's cost items matching ``criteria``, newest first."""
        stmt = self._apply_filter(
            select(CostItemModel).where(CostItemModel.project_id == project_id),
            criteria,
        ).order_by(CostItemModel.item_date.desc(), CostItemModel.id)
        return [model.to_dto() for model in self.session.scalars(stmt)]

    def summarize(
        self,
        project_id: UUID,
        criteria: CostItemFilter | None = None,
    ) -> LedgerSummary:
        """Count and per-status totals over the matching cost items."""
        stmt = self._apply_filter(
            select(
                CostItemModel.status,
                func.count(CostItemModel.id),
                func.sum(CostItemModel.amount),
            ).where(CostItemModel.project_id == project_id),
            criteria,
        ).group_by(CostItemModel.status)

        amounts: dict[str, Decimal] = {}
        count = 0
        for status, status_count, total in self.session.execute(stmt).all():
            count += status_count
            amounts[status] = round_money(Decimal(total)) if total is not None else ZERO

        return LedgerSummary(
            item_count=count,
            planned_amount=amounts.get(CostItemStatus.PLANNED.value, ZERO),
            committed_amount=amounts.get(CostItemStatus.COMMITTED.value, ZERO),
            paid_amount=amounts.get(CostItemStatus.PAID.value, ZERO),
        )

    @staticmethod
    def _apply_filter(stmt: Select, criteria: CostItemFilter | None) -> Select:
        if criteria is None:
            return stmt
        if criteria.search:
            pattern = f"%{_escape_like(criteria.search.strip())}%"
            stmt = stmt.where(
                or_(
                    CostItemModel.description.ilike(pattern, escape="\\"),
                    CostItemModel.supplier_name.ilike(pattern, escape="\\"),
                    CostItemModel.invoice_number.ilike(pattern, escape="\\"),
                )
            )
        if criteria.category is not None:
            stmt = stmt.where(CostItemModel.category == criteria.category.value)
        if criteria.status is not None:
            stmt = stmt.where(CostItemModel.status == criteria.status.value)
        if criteria.date_from is not None:
            stmt = stmt.where(CostItemModel.item_date >= criteria.date_from)
        if criteria.date_to is not None:
            stmt = stmt.where(CostItemModel.item_date <= criteria.date_to)
        return stmt
