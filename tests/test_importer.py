"""
Tests for spreadsheet import: transaction rows and the summary grid.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from water_ledger.datatypes import PaymentStatus
from water_ledger.importer import (
    ImportReport, classify_fill, complement_from_summary, ingest_transaction_rows,
    looks_like_transactions, resolve_headers, resolve_summary_columns,
)
from water_ledger.workbook import GridCell

PAID = 'C6EFCE'
UNPAID = 'FFC7CE'


def row(**kwargs):
    base = {'MeterNumber': '12', 'FullName': 'Ahmed', 'Year': 2024, 'Month': 'janv.',
            'OldReading': 0, 'NewReading': 10, 'Consumption': 10, 'TotalPrice': 50,
            'Status': 'UNPAID'}
    base.update(kwargs)
    return base


def ingest(rows, price=5):
    return ingest_transaction_rows(rows, Decimal(price), locale='fr', today=date(2025, 3, 10))


class TestTransactionRows:
    """Flat customer-month rows grouped into customers"""

    def test_month_name_and_number_collapse_to_one_month(self):
        ledger, report = ingest([
            row(Month='janv.', NewReading=10, Consumption=10, TotalPrice=50),
            row(Month=1, NewReading=12, Consumption=12, TotalPrice=60),
        ])
        assert len(ledger.customers) == 1
        months = ledger.customers[0].months
        assert len(months) == 1
        assert months[0].new_reading == Decimal('12')
        assert months[0].total_price == Decimal('60')
        assert report.duplicate_rows == 1

    def test_groups_by_meter_and_sorts_months(self):
        ledger, report = ingest([
            row(Month='mars', OldReading=20, NewReading=30),
            row(MeterNumber=7.0, FullName='Sara', Month='janv.'),
            row(Month='janv.', OldReading=0, NewReading=10),
            row(Month='févr.', OldReading=10, NewReading=20),
        ])
        assert [c.meter_number for c in ledger.customers] == ['12', '7']
        ahmed = ledger.find_by_meter('12')
        assert [m.date.month for m in ahmed.months] == [1, 2, 3]
        assert [m.label for m in ahmed.months] == ['janvier 2024', 'février 2024', 'mars 2024']
        assert report.customers == 2
        assert report.months == 4

    def test_rows_without_meter_are_dropped(self):
        ledger, report = ingest([
            row(MeterNumber=None),
            row(MeterNumber=''),
            row(MeterNumber=math.nan),
            row(MeterNumber=0),
            row(),
        ])
        assert len(ledger.customers) == 1
        assert report.dropped_no_meter == 4
        assert report.rows == 5

    def test_consumption_defaults_to_reading_difference(self):
        ledger, _ = ingest([row(OldReading=10, NewReading=25, Consumption=None, TotalPrice=None)])
        month = ledger.customers[0].months[0]
        assert month.consumption == Decimal('15')
        assert month.total_price == Decimal('75.00')

    def test_explicit_price_becomes_ledger_price(self):
        ledger, _ = ingest([
            row(Month='janv.', PricePerTon=6, TotalPrice=None),
            row(Month='févr.', PricePerTon=7, TotalPrice=None),
        ])
        assert [m.total_price for m in ledger.customers[0].months] == [Decimal('60.00'), Decimal('70.00')]
        assert ledger.price_per_ton == Decimal('7')

    def test_total_price_kept_without_unit_price(self):
        ledger, _ = ingest([row(Consumption=10, TotalPrice=45)])
        assert ledger.customers[0].months[0].total_price == Decimal('45')
        assert ledger.price_per_ton == Decimal('5')

    def test_status_words(self):
        ledger, _ = ingest([
            row(Month='janv.', Status='مدفوعة'),
            row(Month='févr.', Status='غير مدفوعة'),
            row(Month='mars', Status='PAID'),
            row(Month='avr.', Status=None),
        ])
        assert [m.status for m in ledger.customers[0].months] == [
            PaymentStatus.PAID, PaymentStatus.UNPAID, PaymentStatus.PAID, PaymentStatus.UNPAID]

    def test_iso_date_wins(self):
        ledger, _ = ingest([row(Year=2020, Month='mai', ISODate='2024-06-01T00:00:00.000Z')])
        assert ledger.customers[0].months[0].key == (2024, 5)

    def test_unresolvable_date_falls_back_and_is_counted(self):
        ledger, report = ingest([row(Year=None, Month='?')])
        assert ledger.customers[0].months[0].date == datetime(2025, 3, 1, tzinfo=timezone.utc)
        assert report.fallback_dates == 1

    def test_header_synonyms(self):
        rows = [{'N° Compteur': 5, 'Adhérent': 'Omar', 'Annee': 24, 'Mois': 'يناير',
                 'Old': 3, 'New': 9}]
        ledger, _ = ingest(rows)
        c = ledger.customers[0]
        assert (c.meter_number, c.full_name) == ('5', 'Omar')
        assert c.months[0].key == (2024, 0)
        assert c.months[0].consumption == Decimal('6')

    def test_resolve_headers_is_case_insensitive(self):
        found = resolve_headers(['meternumber', 'FULLNAME', 'isodate'])
        assert found == {'meter_number': 'meternumber', 'full_name': 'FULLNAME', 'iso_date': 'isodate'}

    def test_grid_header_is_not_transaction_rows(self):
        assert looks_like_transactions(['MeterNumber', 'FullName', 'Year', 'Month', 'NewReading'])
        assert looks_like_transactions(['Meter', 'ISODate', None])
        assert not looks_like_transactions(['Meter Number', 'Customer Name', 'janv.-24', None, 'févr.-24'])


class TestSummaryColumns:
    """Month/year of each summary column from its header"""

    def test_combined_tokens(self):
        header = ['Meter Number', 'Customer Name', 'janv.-24', 'févr. 2024', '1-25',
                  'فبراير 2025', 'Total Consumption 2024']
        assert resolve_summary_columns(header) == {
            2: (2024, 0), 3: (2024, 1), 4: (2025, 0), 5: (2025, 1)}

    def test_name_then_year_cell(self):
        header = ['N°', 'Nom', 'janvier', '2025', 'février', '2025']
        assert resolve_summary_columns(header) == {2: (2025, 0), 4: (2025, 1)}

    def test_numeric_months_after_year_cell(self):
        header = ['N°', 'Nom', 2024, 1, 2, 3]
        assert resolve_summary_columns(header) == {3: (2024, 0), 4: (2024, 1), 5: (2024, 2)}

    def test_date_header(self):
        header = ['N°', 'Nom', datetime(2024, 7, 1)]
        assert resolve_summary_columns(header) == {2: (2024, 6)}


def test_classify_fill():
    assert classify_fill('FFC6EFCE', PAID, UNPAID) is PaymentStatus.PAID
    assert classify_fill('00c6efce', PAID, UNPAID) is PaymentStatus.PAID
    assert classify_fill('FFFFC7CE', PAID, UNPAID) is PaymentStatus.UNPAID
    assert classify_fill('FF00FF00', PAID, UNPAID) is PaymentStatus.UNPAID
    assert classify_fill(None, PAID, UNPAID) is PaymentStatus.UNPAID


class TestComplementFromSummary:
    """The summary grid fills gaps but never overrides transaction rows"""

    @pytest.fixture()
    def grid(self):
        header = [GridCell(v) for v in ['Meter Number', 'Customer Name', 'janv.-24', 'févr.-24',
                                        'Total Consumption 2024']]
        return [
            header,
            [GridCell('12'), GridCell('Ahmed'), GridCell(99, 'FFC6EFCE'), GridCell(8, 'FFC6EFCE'),
             GridCell(107)],
            [GridCell(99), GridCell('Sara'), GridCell(None), GridCell('6 t', 'FFFFC7CE'), GridCell(6)],
            [GridCell(None), GridCell('no meter'), GridCell(4), GridCell(4), GridCell(8)],
        ]

    def test_transaction_data_takes_precedence(self, grid):
        ledger, report = ingest([row(Month='janv.', Consumption=10, TotalPrice=50)])
        complement_from_summary(ledger, grid, report, PAID, UNPAID, locale='fr')

        ahmed = ledger.find_by_meter('12')
        jan, feb = ahmed.months
        assert jan.consumption == Decimal('10')
        assert jan.status is PaymentStatus.UNPAID
        assert feb.key == (2024, 1)
        assert (feb.old_reading, feb.new_reading, feb.consumption) == (Decimal(0), Decimal(8), Decimal(8))
        assert feb.total_price == Decimal('40.00')
        assert feb.status is PaymentStatus.PAID
        assert report.summary_skipped == 1
        assert report.summary_added == 2

    def test_customers_only_in_summary_are_added(self, grid):
        ledger, report = ingest([row()])
        complement_from_summary(ledger, grid, report, PAID, UNPAID, locale='fr')

        sara = ledger.find_by_meter('99')
        assert sara.full_name == 'Sara'
        assert len(sara.months) == 1
        assert sara.months[0].consumption == Decimal('6')
        assert sara.months[0].status is PaymentStatus.UNPAID
        assert report.customers == 2

    def test_summary_alone(self, grid):
        ledger, report = ingest([])
        complement_from_summary(ledger, grid, report, PAID, UNPAID, locale='fr')
        ahmed = ledger.find_by_meter('12')
        assert [m.consumption for m in ahmed.months] == [Decimal('99'), Decimal('8')]
        assert ledger.price_per_ton == Decimal('5')
        assert report.summary_added == 3


def test_report_summary_text():
    text = ImportReport(rows=3, customers=1, months=2, duplicate_rows=1).summary()
    assert 'rows: 3' in text and 'duplicates: 1' in text
