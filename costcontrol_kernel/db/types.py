"""
Module: costcontrol_kernel.db.types
Responsibility: Decimal coercion and rounding utilities for monetary and
    percentage figures.  Centralizes precision so that every model, engine and
    service quantizes identically.  Storage precision (Numeric(38, 9)) comes
    from the type map on db/base.py.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and engines.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the kernel.  Monetary amounts are Decimal values
      quantized to cents (fixed-point), so sums are independent of item order
      and of the platform.
    - round_money() / round_percentage() are the ONLY sanctioned rounding
      functions for stored figures.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_QUANTUM = Decimal("0.01")
PERCENTAGE_QUANTUM = Decimal("0.0001")
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce a value to Decimal without going through float.

    Raises:
        ValueError: If the value is a float, or not a finite number.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Refusing to build a monetary value from {type(value).__name__}: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def round_money(amount: Decimal) -> Decimal:
    """Quantize a monetary amount to cents (ROUND_HALF_UP)."""
    return amount.quantize(MONEY_QUANTUM, rounding=DEFAULT_ROUNDING)


def round_percentage(value: Decimal) -> Decimal:
    """Quantize a percentage to four decimal places (ROUND_HALF_UP)."""
    return value.quantize(PERCENTAGE_QUANTUM, rounding=DEFAULT_ROUNDING)
