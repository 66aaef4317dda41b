"""
Unit tests for the money helpers (payment_kernel.db.types).

Verifies:
- Float input is refused
- Rounding is ROUND_HALF_UP and deterministic
- Non-numeric input fails with ValueError
"""

from decimal import ROUND_DOWN, Decimal

import pytest

from payment_kernel.db.types import MONEY_DECIMAL_PLACES, round_money, to_money


class TestToMoney:

    def test_decimal_passes_through(self):
        value = Decimal("100.50")
        assert to_money(value) is value

    def test_int_accepted(self):
        assert to_money(500000) == Decimal("500000")

    def test_string_accepted(self):
        assert to_money(" 1500.25 ") == Decimal("1500.25")

    def test_float_refused(self):
        with pytest.raises(TypeError, match="montant"):
            to_money(0.1, "montant")

    def test_bool_refused(self):
        with pytest.raises(TypeError):
            to_money(True)

    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity"])
    def test_non_numeric_refused(self, value):
        with pytest.raises(ValueError):
            to_money(value)


class TestRoundMoney:

    def test_default_places(self):
        assert MONEY_DECIMAL_PLACES == 2
        assert round_money(Decimal("10.004")) == Decimal("10.00")

    def test_half_up(self):
        assert round_money(Decimal("10.005")) == Decimal("10.01")
        assert round_money(Decimal("-10.005")) == Decimal("-10.01")

    def test_custom_rounding(self):
        assert round_money(Decimal("10.009"), rounding=ROUND_DOWN) == Decimal("10.00")

    def test_zero_places(self):
        assert round_money(Decimal("99.5"), decimal_places=0) == Decimal("100")

    def test_deterministic(self):
        results = {round_money(Decimal("33333.335")) for _ in range(100)}
        assert results == {Decimal("33333.34")}
