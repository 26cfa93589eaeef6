"""
Order pricing.

Amounts are Decimal end to end. Each stored component is rounded to
cents (ROUND_HALF_UP) once, at the point it is stored, and the total is
the sum of the rounded components so it always matches them exactly.

Compounding order:
    service_charge = (subtotal + delivery_fee) * service_charge_rate
    tax_amount     = (subtotal + delivery_fee + service_charge) * tax_rate
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal("0.01")
RATING_PLACES = Decimal("0.00000001")

Number = Union[Decimal, int, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_rating(value: Number) -> Decimal:
    return to_decimal(value).quantize(RATING_PLACES, rounding=ROUND_HALF_UP)


def line_subtotal(price: Number, quantity: int) -> Decimal:
    return quantize_money(to_decimal(price) * quantity)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    delivery_fee: Decimal
    service_charge: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def compute_totals(
    subtotal: Number,
    delivery_fee: Number,
    service_charge_rate: Number,
    tax_rate: Number,
) -> OrderTotals:
    """
    Compute the monetary fields of an order.

    Example:
        >>> compute_totals("25.00", "2.00", "0.05", "0.10").total_amount
        Decimal('31.19')
    """
    subtotal = to_decimal(subtotal)
    delivery_fee = to_decimal(delivery_fee)

    service_charge = (subtotal + delivery_fee) * to_decimal(service_charge_rate)
    tax_amount = (subtotal + delivery_fee + service_charge) * to_decimal(tax_rate)

    stored = [
        quantize_money(subtotal),
        quantize_money(delivery_fee),
        quantize_money(service_charge),
        quantize_money(tax_amount),
    ]
    return OrderTotals(*stored, total_amount=sum(stored, Decimal("0.00")))
