"""
Tests for customer and month operations on an in-memory ledger.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from water_ledger import lifecycle
from water_ledger.datatypes import Ledger, PaymentStatus
from water_ledger.errors import (
    DuplicateMeter, InvalidPrice, InvalidReading, LastMonthProtected, MissingField,
    MonthAlreadyExists, NotFound, RollbackNotConfirmed,
)

JAN_2024 = datetime(2024, 1, 10, tzinfo=timezone.utc)


@pytest.fixture()
def ledger() -> Ledger:
    return Ledger(customers=[], price_per_ton=Decimal('5'))


@pytest.fixture()
def ahmed(ledger):
    return lifecycle.add_customer(ledger, 'Ahmed Alaoui', '1042', 100,
                                  phone='0600000000', registration_date='2023-12-01', now=JAN_2024)


class TestAddCustomer:
    """Registering customers"""

    def test_seed_month(self, ahmed):
        assert len(ahmed.months) == 1
        seed = ahmed.months[0]
        assert seed.old_reading == Decimal('0')
        assert seed.new_reading == Decimal('100')
        assert seed.consumption == Decimal('100')
        assert seed.total_price == Decimal('500.00')
        assert seed.status is PaymentStatus.UNPAID
        assert seed.label == 'janvier 2024'
        assert ahmed.phone == '0600000000'

    def test_meter_number_is_normalized(self, ledger):
        c = lifecycle.add_customer(ledger, 'Fatima', ' 77 ', 0)
        assert c.meter_number == '77'

    def test_duplicate_meter_rejected(self, ledger, ahmed):
        with pytest.raises(DuplicateMeter) as exc:
            lifecycle.add_customer(ledger, 'Someone Else', '1042', 5)
        assert exc.value.owner_name == 'Ahmed Alaoui'
        assert len(ledger.customers) == 1

    def test_missing_fields(self, ledger):
        with pytest.raises(MissingField):
            lifecycle.add_customer(ledger, '  ', '1', 0)
        with pytest.raises(MissingField):
            lifecycle.add_customer(ledger, 'Name', '', 0)
        assert ledger.customers == []

    @pytest.mark.parametrize("reading", ['abc', -1, 'nan'])
    def test_invalid_reading(self, ledger, reading):
        with pytest.raises(InvalidReading):
            lifecycle.add_customer(ledger, 'Name', '1', reading)
        assert ledger.customers == []


class TestAddMonth:
    """Appending the next billing month"""

    def test_next_calendar_month_at_global_price(self, ledger, ahmed):
        month = lifecycle.add_month(ledger, ahmed.id, 112)
        assert month.old_reading == Decimal('100')
        assert month.consumption == Decimal('12')
        assert month.total_price == Decimal('60.00')
        assert month.status is PaymentStatus.UNPAID
        assert (month.date.year, month.date.month) == (2024, 2)
        assert month.label == 'février 2024'

    def test_year_rollover(self, ledger):
        c = lifecycle.add_customer(ledger, 'Omar', '5', 0, now=datetime(2023, 12, 31, tzinfo=timezone.utc))
        month = lifecycle.add_month(ledger, c.id, 3)
        assert (month.date.year, month.date.month) == (2024, 1)

    def test_rollback_needs_confirmation(self, ledger, ahmed):
        with pytest.raises(RollbackNotConfirmed) as exc:
            lifecycle.add_month(ledger, ahmed.id, 20)
        assert exc.value.old_reading == Decimal('100')
        assert len(ahmed.months) == 1

        month = lifecycle.add_month(ledger, ahmed.id, 20, allow_rollback=True)
        assert month.consumption == Decimal('0')
        assert month.total_price == Decimal('0.00')

    def test_duplicate_month_rejected(self, ledger, ahmed):
        # a month already sitting at February blocks the next add
        lifecycle.add_month(ledger, ahmed.id, 110)
        ahmed.months.insert(0, ahmed.months.pop())
        with pytest.raises(MonthAlreadyExists):
            lifecycle.add_month(ledger, ahmed.id, 120)
        assert len(ahmed.months) == 2

    def test_unknown_customer(self, ledger):
        with pytest.raises(NotFound):
            lifecycle.add_month(ledger, 'nope', 1)


class TestPriceChange:
    """The global price only reaches months added afterwards"""

    def test_existing_totals_unchanged(self, ledger, ahmed):
        lifecycle.add_month(ledger, ahmed.id, 110)
        before = [m.total_price for m in ahmed.months]
        lifecycle.change_global_price(ledger, '8')
        assert [m.total_price for m in ahmed.months] == before

        month = lifecycle.add_month(ledger, ahmed.id, 120)
        assert month.total_price == Decimal('80.00')

    @pytest.mark.parametrize("price", ['-1', 'cheap'])
    def test_invalid_price(self, ledger, price):
        with pytest.raises(InvalidPrice):
            lifecycle.change_global_price(ledger, price)
        assert ledger.price_per_ton == Decimal('5')


class TestEditCustomer:
    """Editing details and correcting the last reading"""

    def test_recompute_keeps_month_price(self, ledger):
        c = lifecycle.add_customer(ledger, 'Karim', '9', 0, now=JAN_2024)
        lifecycle.add_month(ledger, c.id, 10)             # 10 t -> 50.00
        lifecycle.change_global_price(ledger, 7)
        lifecycle.edit_customer(ledger, c.id, 'Karim B.', '9', '', '', 20)
        assert c.full_name == 'Karim B.'
        assert c.last_month.consumption == Decimal('20')
        assert c.last_month.total_price == Decimal('100.00')

    def test_meter_taken_by_another_customer(self, ledger, ahmed):
        other = lifecycle.add_customer(ledger, 'Sara', '2000', 5)
        with pytest.raises(DuplicateMeter):
            lifecycle.edit_customer(ledger, other.id, 'Sara', '1042', '', '', 5)
        assert other.meter_number == '2000'

    def test_keeping_own_meter_is_fine(self, ledger, ahmed):
        lifecycle.edit_customer(ledger, ahmed.id, 'Ahmed A.', '1042', '0611', '', 100)
        assert ahmed.phone == '0611'

    def test_rollback_confirmation_applies_to_edit(self, ledger, ahmed):
        lifecycle.add_month(ledger, ahmed.id, 130)
        with pytest.raises(RollbackNotConfirmed):
            lifecycle.edit_customer(ledger, ahmed.id, 'Renamed', '1042', '', '', 90)
        # nothing changed before confirmation
        assert ahmed.full_name == 'Ahmed Alaoui'
        assert ahmed.last_month.new_reading == Decimal('130')

        lifecycle.edit_customer(ledger, ahmed.id, 'Renamed', '1042', '', '', 90, allow_rollback=True)
        assert ahmed.last_month.consumption == Decimal('0')

    def test_rename_keeps_imported_rollback_month(self, ledger, ahmed):
        last = ahmed.last_month
        last.old_reading, last.new_reading = Decimal('100'), Decimal('80')
        last.consumption, last.total_price = Decimal('3'), Decimal('15.00')

        lifecycle.edit_customer(ledger, ahmed.id, 'Ahmed A.', '1042', '', '', 80)
        assert ahmed.full_name == 'Ahmed A.'
        assert (last.new_reading, last.consumption, last.total_price) == (
            Decimal('80'), Decimal('3'), Decimal('15.00'))


class TestMonthsAndDeletion:
    """Deleting and toggling months, deleting customers"""

    def test_last_month_protected(self, ledger, ahmed):
        with pytest.raises(LastMonthProtected):
            lifecycle.delete_month(ledger, ahmed.id, 0)
        assert len(ahmed.months) == 1

    def test_delete_month(self, ledger, ahmed):
        lifecycle.add_month(ledger, ahmed.id, 110)
        removed = lifecycle.delete_month(ledger, ahmed.id, 1)
        assert removed.new_reading == Decimal('110')
        assert len(ahmed.months) == 1

    def test_delete_month_bad_index(self, ledger, ahmed):
        lifecycle.add_month(ledger, ahmed.id, 110)
        with pytest.raises(NotFound):
            lifecycle.delete_month(ledger, ahmed.id, 5)

    def test_toggle_status(self, ledger, ahmed):
        assert lifecycle.toggle_month_status(ledger, ahmed.id, 0).status is PaymentStatus.PAID
        assert lifecycle.toggle_month_status(ledger, ahmed.id, 0).status is PaymentStatus.UNPAID

    def test_delete_customer(self, ledger, ahmed):
        lifecycle.delete_customer(ledger, ahmed.id)
        assert ledger.customers == []
        with pytest.raises(NotFound):
            lifecycle.find_customer(ledger, ahmed.id)


class TestListing:
    """Search and sort"""

    @pytest.fixture()
    def three(self, ledger):
        a = lifecycle.add_customer(ledger, 'Zineb', '30', 300)
        b = lifecycle.add_customer(ledger, 'amine', '4', 40)
        c = lifecycle.add_customer(ledger, 'Hassan', '100', 10)
        lifecycle.toggle_month_status(ledger, b.id, 0)
        return a, b, c

    def test_search_by_name_or_meter(self, ledger, three):
        assert [c.full_name for c in lifecycle.search_customers(ledger, 'HASS')] == ['Hassan']
        assert [c.full_name for c in lifecycle.search_customers(ledger, '30')] == ['Zineb']

    def test_search_by_status(self, ledger, three):
        paid = lifecycle.search_customers(ledger, status=PaymentStatus.PAID)
        unpaid = lifecycle.search_customers(ledger, status=PaymentStatus.UNPAID)
        assert [c.full_name for c in paid] == ['amine']
        assert {c.full_name for c in unpaid} == {'Zineb', 'Hassan'}

    def test_sort(self, ledger, three):
        assert [c.full_name for c in lifecycle.sort_customers(ledger, 'name')] == ['amine', 'Hassan', 'Zineb']
        assert [c.meter_number for c in lifecycle.sort_customers(ledger, 'meter')] == ['4', '30', '100']
        assert [c.full_name for c in lifecycle.sort_customers(ledger, 'reading', descending=True)] == ['Zineb', 'amine', 'Hassan']

    def test_unknown_sort_key(self, ledger):
        with pytest.raises(ValueError):
            lifecycle.sort_customers(ledger, 'age')
