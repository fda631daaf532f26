"""Read-only selectors over the ledger, breakdowns and projects."""

from costcontrol_kernel.selectors.base import BaseSelector
from costcontrol_kernel.selectors.budget_selector import BudgetSelector
from costcontrol_kernel.selectors.cost_item_selector import CostItemSelector

__all__ = ["BaseSelector", "BudgetSelector", "CostItemSelector"]
