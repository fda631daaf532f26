"""ORM models. Importing this package registers every table on Base.metadata."""

from costcontrol_kernel.models.budget_breakdown import BudgetBreakdownModel
from costcontrol_kernel.models.cost_item import CostItemModel
from costcontrol_kernel.models.project import CostControlProjectModel

__all__ = [
    "BudgetBreakdownModel",
    "CostControlProjectModel",
    "CostItemModel",
]
