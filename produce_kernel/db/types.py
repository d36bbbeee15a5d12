"""
Module: produce_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for quantity,
    weight and money columns.  Centralizes precision so that every model and
    service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and produce_engines.  MUST NOT import from any of
    those layers.

Invariants enforced:
    - No floats anywhere in the ledger.  Quantities, weights and prices use
      Decimal with explicit precision.
    - round_money() / round_quantity() are the ONLY sanctioned rounding
      functions.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]
Quantity = Annotated[Decimal, Numeric(38, 9)]
Weight = Annotated[Decimal, Numeric(38, 9)]

# Monotonic sequence number for ledger ordering
Sequence = Annotated[int, BigInteger]

# Short identifier strings (warehouse, company, trade numbers)
ShortCode = Annotated[str, String(50)]

# Free text (reasons, notes, annotations)
LongText = Annotated[str, String(4000)]


MONEY_DECIMAL_PLACES = 2
STORAGE_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """
    Coerce an int, str or Decimal into a Decimal.

    Floats are rejected: they would carry binary rounding noise into the
    ledger.

    Raises:
        TypeError: If value is a float or another unsupported type.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Refusing to convert {type(value).__name__} {value!r} to Decimal")
    if isinstance(value, (int, str)):
        return Decimal(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for reported money values.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_quantity(value: Decimal) -> Decimal:
    """Quantize to storage precision (9 places) before persisting."""
    return round_money(value, STORAGE_DECIMAL_PLACES)
