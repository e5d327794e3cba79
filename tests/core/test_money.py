"""Tests for fixed-point money helpers."""

from __future__ import annotations

from decimal import Decimal

import pytest

from skintrader.core.money import money, pct, pct_to_fraction, ratio, to_decimal


class TestMoney:
    def test_quantizes_to_cents(self) -> None:
        assert money("12.941") == Decimal("12.94")

    def test_rounds_half_up(self) -> None:
        assert money("0.005") == Decimal("0.01")
        assert money("2.675") == Decimal("2.68")

    def test_float_goes_through_str(self) -> None:
        assert money(0.1) == Decimal("0.10")

    def test_invalid_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="not a decimal"):
            to_decimal("abc")


class TestPercentages:
    def test_discount_example(self) -> None:
        # avg7d 35.50, price 28.00
        assert pct(Decimal("7.50"), Decimal("35.50")) == Decimal("21.13")

    def test_ratio_keeps_four_places(self) -> None:
        assert ratio(Decimal("7.50"), Decimal("35.50")) == Decimal("0.2113")

    def test_pct_to_fraction(self) -> None:
        assert pct_to_fraction(Decimal("10")) == Decimal("0.1000")
