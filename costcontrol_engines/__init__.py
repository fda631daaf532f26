"""
Cost Control Engines - pure calculators for budget reconciliation.

No I/O, no sessions, no clock.  Both calculators raise InvalidDataError
subclasses only.
"""

from costcontrol_engines.aggregate import ProjectAggregate, compute_project_aggregate
from costcontrol_engines.rollup import (
    BreakdownFigures,
    CategoryTotals,
    compute_category_totals,
    derive_breakdown,
)

__all__ = [
    "BreakdownFigures",
    "CategoryTotals",
    "ProjectAggregate",
    "compute_category_totals",
    "compute_project_aggregate",
    "derive_breakdown",
]
