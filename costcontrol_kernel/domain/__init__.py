"""Domain layer - pure values, vocabularies, DTOs and the clock abstraction."""

from costcontrol_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from costcontrol_kernel.domain.dtos import (
    BudgetBreakdownRecord,
    ConsistencyReport,
    CostItemFilter,
    CostItemRecord,
    CostItemSnapshot,
    LedgerSummary,
    ProjectRecord,
)
from costcontrol_kernel.domain.values import (
    CostCategory,
    CostItemStatus,
    CostSource,
    parse_category,
    parse_source,
    parse_status,
    percentage,
)

__all__ = [
    "BudgetBreakdownRecord",
    "Clock",
    "ConsistencyReport",
    "CostCategory",
    "CostItemFilter",
    "CostItemRecord",
    "CostItemSnapshot",
    "CostItemStatus",
    "CostSource",
    "DeterministicClock",
    "LedgerSummary",
    "ProjectRecord",
    "SystemClock",
    "parse_category",
    "parse_source",
    "parse_status",
    "percentage",
]
