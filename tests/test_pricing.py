"""
Pricing Tests

Tests:
  1. Compounding order: service on subtotal+fee, tax on subtotal+fee+service
  2. Rounding happens once, at storage precision (half up)
  3. Total always equals the sum of the stored components
"""
from decimal import Decimal

import pytest

from foodhub.services.orders.pricing import (
    compute_totals,
    line_subtotal,
    quantize_money,
    quantize_rating,
)


def test_reference_order_totals():
    totals = compute_totals(Decimal("25.00"), Decimal("2.00"), Decimal("0.05"), Decimal("0.10"))

    assert totals.subtotal == Decimal("25.00")
    assert totals.delivery_fee == Decimal("2.00")
    assert totals.service_charge == Decimal("1.35")
    # (25 + 2 + 1.35) * 0.10 = 2.835 -> 2.84
    assert totals.tax_amount == Decimal("2.84")
    assert totals.total_amount == Decimal("31.19")


def test_tax_is_charged_on_fee_and_service_charge():
    totals = compute_totals("100.00", "10.00", "0.10", "0.20")

    assert totals.service_charge == Decimal("11.00")
    assert totals.tax_amount == Decimal("24.20")  # (100 + 10 + 11) * 0.20
    assert totals.total_amount == Decimal("145.20")


def test_service_charge_is_not_rounded_before_tax():
    # service = 10.01 * 0.125 = 1.25125; tax uses the unrounded value
    totals = compute_totals("10.01", "0.00", "0.125", "0.5")

    assert totals.service_charge == Decimal("1.25")
    assert totals.tax_amount == Decimal("5.63")  # 11.26125 * 0.5 = 5.630625
    assert totals.total_amount == totals.subtotal + totals.delivery_fee + totals.service_charge + totals.tax_amount


@pytest.mark.parametrize(
    "subtotal, fee, service_rate, tax_rate",
    [
        ("0.00", "0.00", "0", "0"),
        ("19.99", "4.99", "0.08", "0.08875"),
        ("7.77", "1.11", "0.033", "0.0725"),
        ("1234.56", "0.00", "1", "1"),
    ],
)
def test_total_equals_sum_of_components(subtotal, fee, service_rate, tax_rate):
    totals = compute_totals(subtotal, fee, service_rate, tax_rate)

    assert totals.total_amount == (
        totals.subtotal + totals.delivery_fee + totals.service_charge + totals.tax_amount
    )
    for amount in (totals.service_charge, totals.tax_amount, totals.total_amount):
        assert amount == amount.quantize(Decimal("0.01"))


def test_zero_rates_add_nothing():
    totals = compute_totals("12.50", "3.00", "0", "0")

    assert totals.service_charge == Decimal("0.00")
    assert totals.tax_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("15.50")


def test_line_subtotal_and_quantizers():
    assert line_subtotal(Decimal("10.00"), 2) == Decimal("20.00")
    assert line_subtotal("3.335", 1) == Decimal("3.34")
    assert quantize_money("2.345") == Decimal("2.35")
    assert quantize_rating(Decimal(65) / Decimal(15)) == Decimal("4.33333333")
