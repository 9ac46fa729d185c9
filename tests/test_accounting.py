"""
Tests for month accounting: consumption, totals and effective price.
"""

from datetime import datetime, timezone
from decimal import Decimal

from water_ledger.accounting import (
    compute_new_month, consumption_between, effective_price, is_rollback,
    recompute_last_month, round_money,
)
from water_ledger.datatypes import Month, PaymentStatus


def _month(old, new, consumption, total):
    return Month(
        label="janvier 2024",
        old_reading=Decimal(old),
        new_reading=Decimal(new),
        consumption=Decimal(consumption),
        total_price=Decimal(total),
        status=PaymentStatus.UNPAID,
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class TestComputeNewMonth:
    """Consumption and total of a freshly added month"""

    def test_basic_formula(self):
        amounts = compute_new_month(100, 112, 5)
        assert amounts.consumption == Decimal('12')
        assert amounts.total_price == Decimal('60.00')

    def test_rollback_clamps_consumption_to_zero(self):
        amounts = compute_new_month(150, 20, 5)
        assert amounts.consumption == Decimal('0')
        assert amounts.total_price == Decimal('0.00')

    def test_fractional_readings_stay_exact(self):
        amounts = compute_new_month(Decimal('10.1'), Decimal('10.3'), Decimal('7.5'))
        assert amounts.consumption == Decimal('0.2')
        assert amounts.total_price == Decimal('1.50')

    def test_total_rounds_half_up_to_cents(self):
        # 3 * 3.335 = 10.005
        assert compute_new_month(0, 3, Decimal('3.335')).total_price == Decimal('10.01')

    def test_float_input_goes_through_str(self):
        assert consumption_between(0.1, 0.3) == Decimal('0.2')


def test_is_rollback():
    assert is_rollback(100, 90)
    assert not is_rollback(100, 100)
    assert not is_rollback(100, 101)


def test_round_money():
    assert round_money(Decimal('2.345')) == Decimal('2.35')
    assert round_money(Decimal('2')) == Decimal('2.00')


class TestEffectivePrice:
    """Price locked into an existing month"""

    def test_price_from_total_and_consumption(self):
        assert effective_price(_month(0, 10, 10, 50), Decimal('9')) == Decimal('5')

    def test_zero_consumption_uses_fallback(self):
        assert effective_price(_month(10, 10, 0, 0), Decimal('9')) == Decimal('9')


class TestRecomputeLastMonth:
    """Correcting a reading keeps the month's own price"""

    def test_recompute_preserves_effective_price(self):
        month = _month(0, 10, 10, 50)
        # global price changed meanwhile; must not leak into this month
        recompute_last_month(month, 20, Decimal('8'))
        assert month.new_reading == Decimal('20')
        assert month.consumption == Decimal('20')
        assert month.total_price == Decimal('100.00')

    def test_recompute_of_empty_month_uses_fallback_price(self):
        month = _month(10, 10, 0, 0)
        recompute_last_month(month, 14, Decimal('8'))
        assert month.consumption == Decimal('4')
        assert month.total_price == Decimal('32.00')

    def test_recompute_below_old_reading_clamps(self):
        month = _month(30, 40, 10, 50)
        recompute_last_month(month, 25, Decimal('5'))
        assert month.consumption == Decimal('0')
        assert month.total_price == Decimal('0.00')
