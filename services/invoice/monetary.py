"""Decimal money helpers.

All amounts are rounded half-up to cents, the rounding EN 16931 validators apply.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
DEFAULT_TOLERANCE = Decimal("0.01")


def to_decimal(value: object) -> Decimal:
    """Convert int/float/str/Decimal/None to Decimal (None becomes 0).

    Floats go through str() so 0.1 stays 0.1.
    """
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValueError(f"Not a monetary value: {value!r}") from e


def round_money(value: object) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[object]) -> Decimal:
    total = Decimal(0)
    for value in values:
        total += to_decimal(value)
    return round_money(total)


def compute_tax(basis: object, rate: object) -> Decimal:
    """Tax for a basis at a percentage rate, rounded half-up.

    Args:
        basis: Taxable amount
        rate: Percentage (19 means 19%)

    Returns:
        Rounded tax amount
    """
    return round_money(to_decimal(basis) * to_decimal(rate) / Decimal(100))


def money_equal(a: object, b: object, tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= tolerance


def is_finite(value: Decimal | None) -> bool:
    return value is not None and value.is_finite()


def format_money(value: object) -> str:
    """Format an amount with exactly two decimals ("1190.00")."""
    return f"{round_money(value):.2f}"


def format_quantity(value: object) -> str:
    """Format a quantity without trailing zeros ("8", "2.5")."""
    quantity = to_decimal(value)
    if quantity == quantity.to_integral_value():
        return str(quantity.quantize(Decimal(1)))
    return format(quantity.normalize(), "f")


def format_rate(value: object) -> str:
    """Format a percentage rate with two decimals ("19.00")."""
    return f"{to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP):.2f}"
