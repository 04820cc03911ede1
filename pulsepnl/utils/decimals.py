"""Decimal helpers shared by the accounting and reporting layers.

All token and quote quantities are ``Decimal``. Intermediate arithmetic runs in
``ACCOUNTING_CONTEXT`` (60 significant digits, round-half-even) and values are
rounded to the on-chain scale only at output boundaries.
"""

from decimal import ROUND_HALF_EVEN, Context, Decimal, InvalidOperation
from typing import Union

# On-chain smallest-unit precision (18 fractional digits for PLS and most ERC20s)
AMOUNT_SCALE = Decimal("1e-18")
PERCENT_SCALE = Decimal("1e-4")

ZERO = Decimal("0")
HUNDRED = Decimal("100")

ACCOUNTING_CONTEXT = Context(prec=60, rounding=ROUND_HALF_EVEN)


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    """Convert a value to Decimal without passing through binary float repr."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a decimal value: {value!r}") from e


def from_base_units(raw: Union[int, str], decimals: int) -> Decimal:
    """Convert a raw integer amount (wei-style smallest units) to a Decimal."""
    try:
        units = int(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Not an integer amount: {raw!r}") from e
    return Decimal(units).scaleb(-decimals, context=ACCOUNTING_CONTEXT)


def mul(a: Decimal, b: Decimal) -> Decimal:
    return ACCOUNTING_CONTEXT.multiply(a, b)


def div(a: Decimal, b: Decimal) -> Decimal:
    """Divide in the accounting context. Caller guarantees ``b != 0``."""
    return ACCOUNTING_CONTEXT.divide(a, b)


def safe_div(a: Decimal, b: Decimal) -> Decimal:
    """Divide, yielding zero for a zero denominator instead of raising."""
    if b == 0:
        return ZERO
    return div(a, b)


def percent(part: Decimal, whole: Decimal) -> Decimal:
    """Return ``part / whole * 100`` quantized to 4 places, 0 when whole is 0."""
    if whole == 0:
        return ZERO.quantize(PERCENT_SCALE)
    return mul(div(part, whole), HUNDRED).quantize(
        PERCENT_SCALE, rounding=ROUND_HALF_EVEN, context=ACCOUNTING_CONTEXT
    )


def quantize(value: Decimal) -> Decimal:
    """Round to the fixed 18-digit output scale (round-half-even)."""
    return value.quantize(AMOUNT_SCALE, rounding=ROUND_HALF_EVEN, context=ACCOUNTING_CONTEXT)
