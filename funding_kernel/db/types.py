"""
Module: funding_kernel.db.types
Responsibility: Annotated type aliases, tolerance constants and Decimal helpers
    shared by models, domain code and services.  Centralizes precision so that
    every component compares amounts and percentages the same way.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats: amounts and percentages are Decimal end to end.
    - One tolerance (0.01) for every "approximately equal" comparison.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import Numeric, String
from sqlalchemy.orm import mapped_column

# Column types for model annotations, e.g. ``amount: Mapped[Money]``.
# A mapped_column() on the attribute adds nullability and defaults.

# Money stored with cent precision
Money = Annotated[Decimal, mapped_column(Numeric(14, 2))]

# Channel and scope tags
ShortCode = Annotated[str, mapped_column(String(20))]

# Opaque actor identity supplied by the caller
ActorId = Annotated[str, mapped_column(String(255))]


TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")
MAX_AMOUNT = Decimal("999999999.99")

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: Any) -> Decimal:
    """
    Coerce an int, str or Decimal to Decimal.

    Floats are converted through ``str()`` so that 0.1 becomes Decimal("0.1")
    rather than its binary expansion.

    Raises:
        ValueError: If value is not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric value: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a numeric value: {value!r}") from exc


def approx_equal(left: Decimal, right: Decimal, tolerance: Decimal = TOLERANCE) -> bool:
    """True when ``|left - right| <= tolerance``."""
    return abs(left - right) <= tolerance


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to cents.

    Applied to incoming amounts before they are validated and stored, and by
    presentation layers.  Ledger arithmetic in between never rounds.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)
