"""
Marketplace — Money helpers

Amounts are Decimal quantized to cents everywhere inside the service. Floats
only appear at the payment-provider boundary, which requires JSON numbers.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce str/int/float/Decimal to a cent-quantized Decimal."""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(unit_price, quantity: int) -> Decimal:
    return (to_money(unit_price) * quantity).quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(amounts: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for amount in amounts:
        total += to_money(amount)
    return total.quantize(CENT)


def format_money(value) -> str:
    return str(to_money(value))
