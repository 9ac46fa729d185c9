"""
Spreadsheet import: transaction rows and the summary grid -> one Ledger.

Transaction rows (one row per customer-month) are the primary source. The
summary grid (one row per customer, one column per calendar month, cell fill
colour = payment status) only complements them: a (meter, year, month) key
already filled from the transaction rows is never overwritten by the grid.

Imports are full snapshots. The Ledger returned here replaces the live one;
nothing is merged into data already in memory.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .accounting import as_decimal, consumption_between, round_money
from .config import Settings, load_settings
from .datatypes import Customer, Ledger, Month, PaymentStatus, normalize_meter
from .errors import InvalidImportShape
from .months import (
    first_of_current_month, month_index, month_label, month_start, normalize_year,
    try_resolve_month_year,
)
from .workbook import read_workbook

logger = logging.getLogger(__name__)

# Header names seen in exported and hand-made sheets, per logical field
FIELD_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    'meter_number': ('MeterNumber', 'meterNumber', 'N° Compteur', 'Meter', 'Meter Number'),
    'full_name': ('FullName', 'fullName', 'Adhérent', 'Name', 'Customer Name'),
    'phone': ('Phone', 'Téléphone'),
    'registration_date': ('RegistrationDate', 'registrationDate'),
    'year': ('Year', 'Anno', 'Annee', 'Année'),
    'month': ('Month', 'Mois'),
    'old_reading': ('OldReading', 'Old'),
    'new_reading': ('NewReading', 'New'),
    'consumption': ('Consumption',),
    'price_per_ton': ('PricePerTon',),
    'total_price': ('TotalPrice',),
    'status': ('Status',),
    'iso_date': ('ISODate', 'Date', 'date'),
}

_NUMBER = re.compile(r'-?\d+(?:[.,]\d+)?')
_HEADER_NAME_YEAR = re.compile(r'^([^-\s]+)[\s-]?(\d{2,4})$')
_YEAR_TOKEN = re.compile(r'^\d{4}$')


@dataclass
class ImportReport:
    rows: int = 0
    dropped_no_meter: int = 0
    duplicate_rows: int = 0
    fallback_dates: int = 0
    summary_added: int = 0
    summary_skipped: int = 0
    customers: int = 0
    months: int = 0

    def summary(self) -> str:
        return (f"rows: {self.rows}, customers: {self.customers}, months: {self.months}, "
                f"no-meter dropped: {self.dropped_no_meter}, duplicates: {self.duplicate_rows}, "
                f"fallback dates: {self.fallback_dates}, summary added: {self.summary_added}, "
                f"summary skipped: {self.summary_skipped}")


# -------------------- cell helpers --------------------

def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _clean(value):
    """Blank cells (None, NaN, NaT, '') become None"""
    return None if _is_blank(value) else value


def _parse_number(value) -> Optional[Decimal]:
    """Number from a cell; text like '6 طن' or '12,5' keeps its first number"""
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return as_decimal(value)
    m = _NUMBER.search(str(value))
    if not m:
        return None
    return Decimal(m.group(0).replace(',', '.'))


def _text(value) -> str:
    if _is_blank(value):
        return ''
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def resolve_headers(columns: Iterable) -> Dict[str, str]:
    """Map logical fields to the actual column names present in a sheet"""
    by_lower = {}
    for col in columns:
        by_lower.setdefault(str(col).strip().lower(), col)
    found = {}
    for field, names in FIELD_SYNONYMS.items():
        for name in names:
            col = by_lower.get(name.lower())
            if col is not None:
                found[field] = col
                break
    return found


def looks_like_transactions(header: Iterable) -> bool:
    """True when a header row names a year, month or date column"""
    found = resolve_headers(c for c in header if not _is_blank(c))
    return any(f in found for f in ('year', 'month', 'iso_date'))


def _field(row: Mapping, headers: Dict[str, str], field: str):
    col = headers.get(field)
    if col is None:
        return None
    return _clean(row.get(col))


def _sort_months(customer: Customer) -> None:
    customer.months.sort(key=lambda m: m.date)


# -------------------- transaction rows --------------------

def ingest_transaction_rows(rows: List[Mapping], current_price,
                            locale: Optional[str] = None,
                            today: Optional[date] = None) -> Tuple[Ledger, ImportReport]:
    """
    Group flat customer-month rows by meter number into a new Ledger.

    Rows without a usable meter number are dropped and counted. A row whose
    (meter, year, month) was already seen replaces the earlier month, so a
    sheet listing the same period twice never doubles it.
    """
    locale = locale or load_settings().month_locale
    current_price = as_decimal(current_price)
    report = ImportReport(rows=len(rows))
    customers: Dict[str, Customer] = {}
    positions: Dict[Tuple[str, int, int], int] = {}
    headers = resolve_headers(rows[0].keys()) if rows else {}
    last_explicit_price = None

    for row in rows:
        headers_for_row = headers if set(headers.values()) <= set(row.keys()) else resolve_headers(row.keys())
        meter = normalize_meter(_field(row, headers_for_row, 'meter_number'))
        if not meter or meter == '0':
            report.dropped_no_meter += 1
            continue

        full_name = _text(_field(row, headers_for_row, 'full_name'))
        phone = _text(_field(row, headers_for_row, 'phone'))
        registration = _text(_field(row, headers_for_row, 'registration_date'))

        year = _field(row, headers_for_row, 'year')
        month_value = _field(row, headers_for_row, 'month')
        iso = _field(row, headers_for_row, 'iso_date')
        period = try_resolve_month_year(year, month_value, iso)
        if period is None:
            period = first_of_current_month(today)
            report.fallback_dates += 1
            logger.warning(f"Meter {meter}: no usable month in year={year!r} month={month_value!r} date={iso!r}; using {period:%Y-%m}")

        old_reading = _parse_number(_field(row, headers_for_row, 'old_reading')) or Decimal(0)
        new_reading = _parse_number(_field(row, headers_for_row, 'new_reading')) or Decimal(0)
        consumption = (_parse_number(_field(row, headers_for_row, 'consumption'))
                       or consumption_between(old_reading, new_reading))
        total = _parse_number(_field(row, headers_for_row, 'total_price'))

        price = _parse_number(_field(row, headers_for_row, 'price_per_ton'))
        if price is not None:
            last_explicit_price = price
        else:
            price = current_price
        # an explicit total already carries the month's own price
        if total is None:
            total = round_money(consumption * price)

        customer = customers.get(meter)
        if customer is None:
            customer = Customer(id=uuid.uuid4().hex, full_name=full_name, meter_number=meter,
                                created_at=datetime.now(timezone.utc))
            customers[meter] = customer
        if full_name:
            customer.full_name = full_name
        if phone:
            customer.phone = phone
        if registration:
            customer.registration_date = registration

        month = Month(
            label=month_label(period, locale),
            old_reading=old_reading,
            new_reading=new_reading,
            consumption=consumption,
            total_price=total,
            status=PaymentStatus.parse(_field(row, headers_for_row, 'status')),
            date=period,
        )
        key = (meter, period.year, period.month - 1)
        if key in positions:
            customer.months[positions[key]] = month
            report.duplicate_rows += 1
            logger.warning(f"Meter {meter}: {period:%Y-%m} listed twice, keeping the later row")
        else:
            positions[key] = len(customer.months)
            customer.months.append(month)

    for customer in customers.values():
        _sort_months(customer)
        if not customer.full_name:
            customer.full_name = customer.meter_number
            logger.warning(f"Meter {customer.meter_number} has no name; using the meter number")

    ledger = Ledger(customers=list(customers.values()),
                    price_per_ton=last_explicit_price if last_explicit_price is not None else current_price)
    _count(ledger, report)
    return ledger, report


# -------------------- summary grid --------------------

def classify_fill(rgb, paid_fill: str, unpaid_fill: str) -> PaymentStatus:
    """
    Payment status from a cell's fill colour.

    Lossy by nature: anything other than the paid colour, including no fill
    or theme colours, reads as UNPAID.
    """
    if not isinstance(rgb, str):
        return PaymentStatus.UNPAID
    up = rgb.upper()
    if paid_fill.upper() in up:
        return PaymentStatus.PAID
    if unpaid_fill.upper() not in up:
        logger.debug(f"Unrecognized fill {rgb}, reading it as unpaid")
    return PaymentStatus.UNPAID


def resolve_summary_columns(header: List) -> Dict[int, Tuple[int, int]]:
    """
    Map column positions of a summary header to (year, month index).

    Columns 0 and 1 hold the meter and the name. A month column is recognized
    from a real date cell, a 'name-year' token ('janv.-25', 'يناير 2025',
    '1-25'), a month name followed by a year cell, or a month number placed
    after a year cell or after another month column of the same year.
    """
    texts = [_text(v) for v in header]
    columns: Dict[int, Tuple[int, int]] = {}

    for c in range(2, len(header)):
        value = header[c]
        text = texts[c]
        if isinstance(value, (datetime, date)):
            columns[c] = (value.year, value.month - 1)
            continue
        if not text:
            continue

        m = _HEADER_NAME_YEAR.match(text)
        if m:
            idx = month_index(m.group(1))
            if idx >= 0:
                columns[c] = (normalize_year(m.group(2)), idx)
                continue

        if not text[0].isdigit():
            idx = month_index(text)
            nxt = texts[c + 1] if c + 1 < len(texts) else ''
            if idx >= 0 and re.match(r'^\d{2}$|^\d{4}$', nxt):
                columns[c] = (normalize_year(nxt), idx)
            continue

        if text.isdigit() and 1 <= int(text) <= 12:
            if c - 1 in columns:
                columns[c] = (columns[c - 1][0], int(text) - 1)
            elif _YEAR_TOKEN.match(texts[c - 1]):
                columns[c] = (int(texts[c - 1]), int(text) - 1)

    return columns


def complement_from_summary(ledger: Ledger, grid: List[List], report: ImportReport,
                            paid_fill: str, unpaid_fill: str,
                            locale: Optional[str] = None) -> Ledger:
    """
    Add months found only in the summary grid.

    `grid` is a list of rows of cells with `.value` and `.fill` attributes;
    the first row is the header. Transaction data wins: a key already present
    in `ledger` is skipped and counted in report.summary_skipped.
    """
    if not grid:
        return ledger
    locale = locale or load_settings().month_locale
    columns = resolve_summary_columns([cell.value for cell in grid[0]])
    if not columns:
        logger.warning("Summary sheet has no recognizable month columns")
        return ledger

    existing = {(c.meter_number, *m.key) for c in ledger.customers for m in c.months}
    touched = set()

    for row in grid[1:]:
        if not row:
            continue
        meter = normalize_meter(_clean(row[0].value))
        if not meter or meter == '0':
            continue
        name = _text(row[1].value) if len(row) > 1 else ''
        customer = ledger.find_by_meter(meter)
        if customer is None:
            customer = Customer(id=uuid.uuid4().hex, full_name=name or meter, meter_number=meter,
                                created_at=datetime.now(timezone.utc))
            ledger.customers.append(customer)

        for c, (year, idx) in columns.items():
            if c >= len(row):
                continue
            consumption = _parse_number(row[c].value)
            if consumption is None:
                continue
            key = (meter, year, idx)
            if key in existing:
                report.summary_skipped += 1
                logger.debug(f"Meter {meter}: {year}-{idx + 1:02d} already imported from transactions")
                continue
            period = month_start(year, idx)
            customer.months.append(Month(
                label=month_label(period, locale),
                old_reading=Decimal(0),
                new_reading=consumption,
                consumption=consumption,
                total_price=round_money(consumption * ledger.price_per_ton),
                status=classify_fill(row[c].fill, paid_fill, unpaid_fill),
                date=period,
            ))
            existing.add(key)
            touched.add(meter)
            report.summary_added += 1

    for customer in ledger.customers:
        if customer.meter_number in touched:
            _sort_months(customer)
    empty = [c for c in ledger.customers if not c.months]
    for customer in empty:
        ledger.customers.remove(customer)
        logger.info(f"Meter {customer.meter_number} has no months in the summary sheet; skipped")

    _count(ledger, report)
    return ledger


def _count(ledger: Ledger, report: ImportReport) -> None:
    report.customers = len(ledger.customers)
    report.months = sum(len(c.months) for c in ledger.customers)


# -------------------- workbook orchestration --------------------

def import_workbook(path: Path, current_price,
                    settings: Optional[Settings] = None) -> Tuple[Ledger, ImportReport]:
    """Read a workbook and build the Ledger it describes"""
    settings = settings or load_settings()
    tables = read_workbook(path, settings, is_transactions_header=looks_like_transactions)
    if tables.transactions is None and tables.summary is None:
        raise InvalidImportShape(f"{path} has no transactions or summary sheet")

    ledger, report = ingest_transaction_rows(tables.transactions or [], current_price,
                                             locale=settings.month_locale)
    if tables.summary:
        complement_from_summary(ledger, tables.summary, report,
                                settings.paid_fill, settings.unpaid_fill,
                                locale=settings.month_locale)
    logger.info(f"[Import summary] {report.summary()}")
    if not ledger.customers:
        raise InvalidImportShape(f"{path} holds no customer with a meter number")
    return ledger, report
