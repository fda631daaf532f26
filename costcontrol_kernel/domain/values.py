"""
Values -- Closed vocabularies and small pure helpers for the cost ledger.

Responsibility:
    Defines the closed set of cost categories, the cost item lifecycle
    statuses, and the cost sources, together with the parsing rules that
    turn caller- or storage-supplied strings into them.  Also provides the
    one sanctioned percentage helper (explicit zero-denominator branch).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by engines, models, selectors and services.

Invariants enforced:
    - A category is one of seven construction cost categories; anything
      else raises UnknownCategoryError after normalization.
    - A status is one of planned / committed / paid.
    - Percentages with a zero denominator are 0, never NaN or infinity.
"""

from __future__ import annotations

import re
from decimal import Decimal
from enum import Enum

from costcontrol_kernel.db.types import HUNDRED, round_percentage
from costcontrol_kernel.exceptions import (
    InvalidDataError,
    UnknownCategoryError,
    UnknownStatusError,
)


class CostCategory(str, Enum):
    """Budget category a cost item is charged to."""

    MATERIALS = "materials"
    DIRECT_LABOR = "direct_labor"
    SUBCONTRACTS = "subcontracts"
    MACHINERY = "machinery"
    INSURANCE = "insurance"
    GENERAL_EXPENSES = "general_expenses"
    INDIRECT_COSTS = "indirect_costs"


class CostItemStatus(str, Enum):
    """
    Lifecycle status of a cost item.

    Legal forward path: planned -> committed -> paid.  Backward moves are
    not rejected; rollups always recompute from the current status.
    """

    PLANNED = "planned"
    COMMITTED = "committed"
    PAID = "paid"

    @property
    def is_actual(self) -> bool:
        """Paid spend counts as actual; everything else as committed."""
        return self is CostItemStatus.PAID


_STATUS_ORDER = {
    CostItemStatus.PLANNED: 0,
    CostItemStatus.COMMITTED: 1,
    CostItemStatus.PAID: 2,
}


class CostSource(str, Enum):
    """Where a cost item originated."""

    TREASURY = "treasury"
    SUPPLIER = "supplier"
    PAYROLL = "payroll"
    MANUAL = "manual"


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_category_label(value: str) -> str:
    """
    Normalize a category label to snake_case.

    ``"Direct Labor"``, ``"direct-labor"`` and ``"directLabor"`` all become
    ``"direct_labor"``.
    """
    label = _CAMEL_BOUNDARY.sub("_", value.strip())
    label = _SEPARATORS.sub("_", label)
    return label.lower()


def parse_category(
    value: CostCategory | str,
    cost_item_id: str | None = None,
) -> CostCategory:
    """
    Parse a category, normalizing the label first.

    Raises:
        UnknownCategoryError: If the normalized label is not in the closed set.
    """
    if isinstance(value, CostCategory):
        return value
    if not isinstance(value, str):
        raise UnknownCategoryError(repr(value), cost_item_id)
    try:
        return CostCategory(normalize_category_label(value))
    except ValueError:
        raise UnknownCategoryError(value, cost_item_id) from None


def parse_status(
    value: CostItemStatus | str,
    cost_item_id: str | None = None,
) -> CostItemStatus:
    """
    Parse a status (case-insensitive, surrounding whitespace ignored).

    Raises:
        UnknownStatusError: If the value is not planned / committed / paid.
    """
    if isinstance(value, CostItemStatus):
        return value
    if not isinstance(value, str):
        raise UnknownStatusError(repr(value), cost_item_id)
    try:
        return CostItemStatus(value.strip().lower())
    except ValueError:
        raise UnknownStatusError(value, cost_item_id) from None


def parse_source(value: CostSource | str) -> CostSource:
    """Parse a cost source; raises InvalidDataError for unknown sources."""
    if isinstance(value, CostSource):
        return value
    try:
        return CostSource(str(value).strip().lower())
    except ValueError:
        raise InvalidDataError(f"Unknown cost source: {value!r}") from None


def is_forward_transition(old: CostItemStatus, new: CostItemStatus) -> bool:
    """True when ``new`` is the same as or later than ``old`` in the lifecycle."""
    return _STATUS_ORDER[new] >= _STATUS_ORDER[old]


def percentage(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator * 100, or 0 when the denominator is zero."""
    if denominator == 0:
        return round_percentage(Decimal("0"))
    return round_percentage(numerator / denominator * HUNDRED)
