"""
Test suite for currency module

Tests Money arithmetic, rounding to currency precision and amount parsing.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from loan_ledger.currency import Money, Currency, decimal_from_string


class TestMoney:
    """Test Money class operations"""

    def test_money_rounds_to_currency_precision(self):
        """Amounts are rounded half up to two decimals"""
        assert Money(Decimal('100.555'), Currency.DOP).amount == Decimal('100.56')
        assert Money(Decimal('100.554'), Currency.DOP).amount == Decimal('100.55')

    def test_non_decimal_amount_is_converted(self):
        """Integers and strings become Decimal"""
        money = Money(1500, Currency.DOP)
        assert money.amount == Decimal('1500.00')
        assert isinstance(money.amount, Decimal)

    def test_arithmetic_rerounds(self):
        """Every operation result is re-rounded"""
        principal = Money(Decimal('10000'), Currency.DOP)
        assert principal / 3 == Money(Decimal('3333.33'), Currency.DOP)
        assert principal * (Decimal('20') / Decimal('100') / 12) == Money(Decimal('166.67'), Currency.DOP)

    def test_add_and_subtract(self):
        a = Money(Decimal('300.00'), Currency.DOP)
        b = Money(Decimal('125.50'), Currency.DOP)
        assert a + b == Money(Decimal('425.50'), Currency.DOP)
        assert a - b == Money(Decimal('174.50'), Currency.DOP)

    def test_mixed_currency_rejected(self):
        """Loans are single-currency, mixing raises"""
        with pytest.raises(ValueError, match="Cannot add"):
            Money(Decimal('1'), Currency.DOP) + Money(Decimal('1'), Currency.USD)
        with pytest.raises(ValueError, match="Cannot compare"):
            Money(Decimal('1'), Currency.DOP) < Money(Decimal('1'), Currency.USD)

    def test_sum_and_zero(self):
        amounts = [Money(Decimal('1.10'), Currency.DOP), Money(Decimal('2.20'), Currency.DOP)]
        assert Money.sum(amounts, Currency.DOP) == Money(Decimal('3.30'), Currency.DOP)
        assert Money.sum([], Currency.USD) == Money.zero(Currency.USD)
        assert Money.zero(Currency.DOP).is_zero()

    def test_sign_checks(self):
        assert Money(Decimal('0.01'), Currency.DOP).is_positive()
        assert Money(Decimal('-0.01'), Currency.DOP).is_negative()
        assert not Money(Decimal('0'), Currency.DOP).is_positive()

    def test_min_uses_ordering(self):
        small = Money(Decimal('10'), Currency.DOP)
        large = Money(Decimal('20'), Currency.DOP)
        assert min(large, small) == small

    def test_to_string(self):
        assert Money(Decimal('1234.5'), Currency.DOP).to_string() == "DOP 1,234.50"

    def test_money_is_hashable(self):
        assert len({Money(Decimal('1'), Currency.DOP), Money(Decimal('1.00'), Currency.DOP)}) == 1


class TestDecimalFromString:
    """Test parsing of user-entered amounts"""

    def test_plain_and_symbol(self):
        assert decimal_from_string("1500") == Decimal('1500')
        assert decimal_from_string("RD$ 1,500.75") == Decimal('1500.75')

    def test_comma_decimal(self):
        assert decimal_from_string("12,50") == Decimal('12.50')

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            decimal_from_string("")
        with pytest.raises(ValueError):
            decimal_from_string("abc")
