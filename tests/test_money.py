# tests/test_money.py

from decimal import Decimal

import pytest

from core.exceptions import InvalidAmount
from core.models import FinancialSettings
from core.utils import (
    calculate_percentage, format_money, money_str, sum_money, to_money, to_positive_money,
)


class TestToMoney:

    @pytest.mark.parametrize('value, expected', [
        ('1500', Decimal('1500.00')),
        (1500, Decimal('1500.00')),
        ('10.5', Decimal('10.50')),
        (Decimal('0.01'), Decimal('0.01')),
        (0.1, Decimal('0.10')),
        ('  42.00 ', Decimal('42.00')),
    ])
    def test_converts_to_two_places(self, value, expected):
        assert to_money(value) == expected
        assert to_money(value).as_tuple().exponent == -2

    @pytest.mark.parametrize('value', ['10.005', '0.001', Decimal('1.234')])
    def test_rejects_sub_cent_precision(self, value):
        with pytest.raises(InvalidAmount):
            to_money(value)

    @pytest.mark.parametrize('value', [None, True, 'abc', '', 'NaN', 'Infinity', [1]])
    def test_rejects_non_numeric(self, value):
        with pytest.raises(InvalidAmount):
            to_money(value)

    def test_rejects_amounts_that_do_not_fit_a_ledger_column(self):
        with pytest.raises(InvalidAmount):
            to_money('10000000000.00')

    def test_error_names_the_field(self):
        with pytest.raises(InvalidAmount) as exc_info:
            to_money('x', field='refund amount')
        assert 'refund amount' in exc_info.value.message
        assert exc_info.value.to_dict()['error'] == 'INVALID_AMOUNT'


class TestPositiveMoney:

    def test_accepts_one_cent(self):
        assert to_positive_money('0.01') == Decimal('0.01')

    @pytest.mark.parametrize('value', ['0', '0.00', '-5'])
    def test_rejects_zero_and_negative(self, value):
        with pytest.raises(InvalidAmount):
            to_positive_money(value)


def test_sum_money_is_exact():
    assert sum_money(['0.10'] * 10) == Decimal('1.00')
    assert sum_money([]) == Decimal('0.00')


def test_calculate_percentage():
    assert calculate_percentage(75, 100) == Decimal('75.00')
    assert calculate_percentage(Decimal('1'), Decimal('3')) == Decimal('33.33')
    assert calculate_percentage(10, 0) == Decimal('0.00')


def test_money_str():
    assert money_str(Decimal('12.3')) == '12.30'
    assert money_str(None) is None


@pytest.mark.django_db
def test_format_money_follows_financial_settings():
    assert format_money(Decimal('1500000')) == 'KES 1,500,000.00'
    assert format_money('25.5', include_symbol=False) == '25.50'

    settings = FinancialSettings.get_instance()
    settings.currency_position = 'AFTER_NO_SPACE'
    settings.use_thousand_separator = False
    settings.save()

    assert format_money(1500) == '1500.00KES'
