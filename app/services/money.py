"""Money helpers.

Amounts are dollars as Decimal inside the app and integer cents at the
Stripe boundary. Floats coming from JSON carts go through str() first so
0.1 stays 0.1.
"""

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_decimal(value):
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value):
    """Round a dollar amount to the cent, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value):
    """Dollars -> integer cents, rounded once here and nowhere else."""
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents):
    return (Decimal(int(cents or 0)) / 100).quantize(CENT)
