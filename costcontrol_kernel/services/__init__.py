"""Services for the cost control kernel (write side)."""

from costcontrol_kernel.services.budget_planning_service import (
    BudgetPlanningService,
    split_evenly,
    validate_budget,
)
from costcontrol_kernel.services.cost_ledger_service import (
    CostLedgerService,
    MutationResult,
    validate_amount,
)
from costcontrol_kernel.services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    BatchReconciliationReport,
    ReconciliationResult,
    ReconciliationService,
)

__all__ = [
    "BatchReconciliationReport",
    "BudgetPlanningService",
    "CostLedgerService",
    "MutationResult",
    "ReconciliationResult",
    "ReconciliationService",
    "SYSTEM_ACTOR_ID",
    "split_evenly",
    "validate_amount",
    "validate_budget",
]
