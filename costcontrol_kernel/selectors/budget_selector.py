"""
Module: costcontrol_kernel.selectors.budget_selector
Responsibility: Read access to projects and their budget breakdowns for
    reporting consumers, plus a consistency check of the stored project
    totals against the breakdown rows.

Reporting consumers may read while a reconciliation is in flight.  Because
reconciliation commits breakdowns and project totals in one transaction,
a single read transaction here never sees them disagree.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from costcontrol_kernel.db.types import ZERO
from costcontrol_kernel.domain.dtos import (
    BudgetBreakdownRecord,
    ConsistencyReport,
    ProjectRecord,
)
from costcontrol_kernel.exceptions import ProjectNotFoundError
from costcontrol_kernel.models.budget_breakdown import BudgetBreakdownModel
from costcontrol_kernel.models.project import CostControlProjectModel
from costcontrol_kernel.selectors.base import BaseSelector


class BudgetSelector(BaseSelector):
    """Queries over ``cost_control_projects`` and ``budget_breakdowns``."""

    def get_project(self, project_id: UUID) -> ProjectRecord | None:
        model = self.session.get(CostControlProjectModel, project_id, populate_existing=True)
        return model.to_dto() if model is not None else None

    def list_projects(self) -> list[ProjectRecord]:
        stmt = select(CostControlProjectModel).order_by(CostControlProjectModel.project_name)
        return [model.to_dto() for model in self.session.scalars(stmt)]

    def list_project_ids(self) -> list[UUID]:
        stmt = select(CostControlProjectModel.id).order_by(CostControlProjectModel.project_code)
        return list(self.session.scalars(stmt))

    def breakdowns(self, project_id: UUID) -> list[BudgetBreakdownRecord]:
        """All breakdown rows of a project, ordered by category."""
        stmt = (
            select(BudgetBreakdownModel)
            .where(BudgetBreakdownModel.project_id == project_id)
            .order_by(BudgetBreakdownModel.category)
        )
        return [model.to_dto() for model in self.session.scalars(stmt)]

    def check_consistency(self, project_id: UUID) -> ConsistencyReport:
        """
        Compare the project's stored totals with its breakdown rows.

        Raises:
            ProjectNotFoundError: If the project does not exist.
        """
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(str(project_id))

        rows = self.breakdowns(project_id)
        return ConsistencyReport(
            project_id=project_id,
            recorded_total_actual=project.total_actual_cost,
            breakdown_actual_sum=sum((row.actual for row in rows), ZERO),
            recorded_total_committed=project.total_committed_cost,
            breakdown_committed_sum=sum((row.committed for row in rows), ZERO),
            breakdown_count=len(rows),
        )
