"""Shared constants and read helpers for the cost control tests."""

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from costcontrol_kernel.models.budget_breakdown import BudgetBreakdownModel
from costcontrol_kernel.models.project import CostControlProjectModel

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


def breakdowns_by_category(session: Session, project_id: UUID) -> dict[str, BudgetBreakdownModel]:
    """Committed breakdown rows of a project keyed by category."""
    session.expire_all()
    rows = session.scalars(
        select(BudgetBreakdownModel).where(BudgetBreakdownModel.project_id == project_id)
    ).all()
    return {row.category: row for row in rows}


def load_project(session: Session, project_id: UUID) -> CostControlProjectModel:
    """Committed project row, bypassing the identity map cache."""
    session.expire_all()
    return session.get(CostControlProjectModel, project_id)
