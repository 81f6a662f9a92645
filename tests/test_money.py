"""Money and quantity primitives."""

from decimal import Decimal

import pytest

from storefront.pricing.money import (
    ensure_money,
    format_money,
    line_total,
    percent_of,
    subtract_clamped,
    sum_money,
    to_major_units,
    to_minor_units,
)


class TestEnsureMoney:
    def test_accepts_zero_and_positive_ints(self):
        assert ensure_money(0) == 0
        assert ensure_money(129950) == 129950

    @pytest.mark.parametrize("bad", [-1, 1.5, "100", True, None])
    def test_rejects_non_money(self, bad):
        with pytest.raises(ValueError):
            ensure_money(bad)


class TestArithmetic:
    def test_line_total(self):
        assert line_total(50000, 3) == 150000

    def test_line_total_rejects_negative_quantity(self):
        with pytest.raises(ValueError):
            line_total(50000, -1)

    def test_sum_money(self):
        assert sum_money([100, 200, 300]) == 600
        assert sum_money([]) == 0

    def test_subtract_clamped_never_negative(self):
        assert subtract_clamped(1000, 300) == 700
        assert subtract_clamped(1000, 5000) == 0


class TestPercentOf:
    def test_floors_result(self):
        # 10% of 999 = 99.9 -> 99
        assert percent_of(999, 10) == 99

    def test_fractional_rate_is_exact(self):
        # 12.5% of 1000 = 125 exactly; float arithmetic must not leak in
        assert percent_of(1000, 12.5) == 125
        assert percent_of(1000, Decimal("12.5")) == 125

    def test_hundred_percent(self):
        assert percent_of(150000, 100) == 150000

    def test_rejects_negative_rate(self):
        with pytest.raises(ValueError):
            percent_of(1000, -5)


class TestUnitConversion:
    def test_to_minor_units(self):
        assert to_minor_units("1299.50") == 129950
        assert to_minor_units(60) == 6000
        assert to_minor_units(Decimal("0.019")) == 1

    def test_to_major_units(self):
        assert to_major_units(129950) == Decimal("1299.50")
        assert str(to_major_units(5)) == "0.05"

    def test_format_money(self):
        assert format_money(129950) == "BDT 1,299.50"
        assert format_money(5, currency="USD") == "USD 0.05"
