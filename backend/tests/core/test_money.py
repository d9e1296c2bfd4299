"""Tests for cent/major-unit conversion and fee rounding."""

from decimal import Decimal

import pytest

from app.core.money import from_minor_units, percentage_of, to_decimal, to_minor_units
from app.services.payment_gateway import PaymentGateway


class TestMoneyConversion:
    def test_authorized_total_in_cents(self):
        base = Decimal("100.00")
        fee = PaymentGateway.compute_platform_fee(base)

        assert fee == Decimal("10.00")
        assert to_minor_units(base + fee) == 11000

    def test_cents_back_to_major_units(self):
        assert from_minor_units(11000) == Decimal("110.00")
        assert from_minor_units(1) == Decimal("0.01")

    def test_float_input_has_no_binary_noise(self):
        assert to_decimal(0.1 + 0.2) == Decimal("0.30")
        assert to_minor_units(19.99) == 1999

    @pytest.mark.parametrize(
        "base,expected",
        [
            ("45.55", Decimal("4.56")),  # 4.555 rounds half-up
            ("0.04", Decimal("0.00")),
            ("0.05", Decimal("0.01")),
            ("250", Decimal("25.00")),
        ],
    )
    def test_platform_fee_rounds_half_up(self, base, expected):
        assert percentage_of(base, 10) == expected
