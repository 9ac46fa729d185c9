import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

import pandas as pd

from .accounting import effective_price, round_money
from .datatypes import Customer, Ledger, PaymentStatus
from .lifecycle import unpaid_count
from .months import FR_SHORT_MONTHS

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = [
    'MeterNumber',
    'FullName',
    'Phone',
    'RegistrationDate',
    'Year',
    'Month',
    'OldReading',
    'NewReading',
    'Consumption',
    'PricePerTon',
    'TotalPrice',
    'Status',
    'ISODate',
]

# Aggregate columns appended after each year's 12 month columns
AGGREGATE_KINDS = [
    ('total_consumption', 'Total Consumption'),
    ('total_revenue', 'Total Revenue'),
    ('unpaid_months', 'Unpaid Months'),
    ('unpaid_total', 'Unpaid Total'),
]


@dataclass
class Statistics:
    total_customers: int
    total_consumption: Decimal
    total_revenue: Decimal
    total_paid: Decimal
    total_unpaid: Decimal
    avg_consumption: Decimal     # per billed month
    total_months: int = 0


@dataclass
class SummaryColumn:
    kind: str                    # meter, name, month or one of AGGREGATE_KINDS
    header: str
    year: Optional[int] = None
    month_index: Optional[int] = None


@dataclass
class SummaryTable:
    columns: List[SummaryColumn]
    rows: List[list]
    # per row: column position -> status of the month shown there
    statuses: List[Dict[int, PaymentStatus]] = field(default_factory=list)

    @property
    def headers(self) -> List[str]:
        return [c.header for c in self.columns]

    def month_columns(self) -> List[int]:
        return [i for i, c in enumerate(self.columns) if c.kind == 'month']

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=self.headers)


def _whole(x) -> int:
    return int(Decimal(x).quantize(Decimal(1), ROUND_HALF_UP))


def compute_statistics(ledger: Ledger) -> Statistics:
    """Totals over every month of every customer"""
    total_consumption = Decimal('0')
    total_revenue = Decimal('0')
    total_paid = Decimal('0')
    total_unpaid = Decimal('0')
    total_months = 0

    for customer in ledger.customers:
        for month in customer.months:
            total_months += 1
            total_consumption += month.consumption
            total_revenue += month.total_price
            if month.status is PaymentStatus.PAID:
                total_paid += month.total_price
            else:
                total_unpaid += month.total_price

    avg = total_consumption / total_months if total_months else Decimal('0')
    return Statistics(
        total_customers=len(ledger.customers),
        total_consumption=total_consumption,
        total_revenue=total_revenue,
        total_paid=total_paid,
        total_unpaid=total_unpaid,
        avg_consumption=avg,
        total_months=total_months,
    )


def summary_years(ledger: Ledger, today: Optional[date] = None) -> List[int]:
    years = {m.date.year for c in ledger.customers for m in c.months}
    if not years:
        today = today or datetime.now(timezone.utc).date()
        years.add(today.year)
    return sorted(years)


def month_header(year: int, index: int) -> str:
    """Summary column header, e.g. 'janv.-24'"""
    return f"{FR_SHORT_MONTHS[index]}-{str(year)[2:]}"


def build_summary(ledger: Ledger, today: Optional[date] = None) -> SummaryTable:
    """
    Wide table: one row per customer, 12 month columns and 4 aggregates per year.

    Month cells hold the consumption rounded to a whole unit, or None when the
    customer has no month at that key. The column metadata and the per-cell
    statuses travel with the table so the workbook writer can colour cells
    without parsing headers back.
    """
    years = summary_years(ledger, today)
    columns = [SummaryColumn('meter', 'Meter Number'), SummaryColumn('name', 'Customer Name')]
    for year in years:
        for idx in range(12):
            columns.append(SummaryColumn('month', month_header(year, idx), year, idx))
        for kind, title in AGGREGATE_KINDS:
            columns.append(SummaryColumn(kind, f"{title} {year}", year))

    rows = []
    statuses = []
    for customer in ledger.customers:
        by_key = {}
        for m in customer.months:
            by_key.setdefault(m.key, m)

        row = []
        row_status = {}
        for pos, col in enumerate(columns):
            if col.kind == 'meter':
                row.append(customer.meter_number)
            elif col.kind == 'name':
                row.append(customer.full_name)
            elif col.kind == 'month':
                month = by_key.get((col.year, col.month_index))
                if month is None:
                    row.append(None)
                else:
                    row.append(_whole(month.consumption))
                    row_status[pos] = month.status
            else:
                row.append(_year_aggregate(customer, col.year, col.kind))
        rows.append(row)
        statuses.append(row_status)

    logger.debug(f"Summary table: {len(rows)} customers, years {years}")
    return SummaryTable(columns=columns, rows=rows, statuses=statuses)


def _year_aggregate(customer: Customer, year: int, kind: str):
    months = [m for m in customer.months if m.date.year == year]
    unpaid = [m for m in months if m.status is PaymentStatus.UNPAID]
    if kind == 'total_consumption':
        return sum(_whole(m.consumption) for m in months)
    if kind == 'total_revenue':
        return float(round_money(sum((m.total_price for m in months), Decimal('0'))))
    if kind == 'unpaid_months':
        return len(unpaid)
    if kind == 'unpaid_total':
        return float(round_money(sum((m.total_price for m in unpaid), Decimal('0'))))
    raise ValueError(f"Unknown aggregate column {kind!r}")


def build_transaction_rows(ledger: Ledger) -> List[dict]:
    """
    One row per customer-month for the Transactions sheet.

    PricePerTon is each month's own effective price, so re-importing the
    sheet keeps historical prices even after the global price changed.
    """
    rows = []
    for customer in ledger.customers:
        for month in customer.months:
            price = effective_price(month, ledger.price_per_ton)
            rows.append({
                'MeterNumber': customer.meter_number,
                'FullName': customer.full_name,
                'Phone': customer.phone,
                'RegistrationDate': customer.registration_date,
                'Year': month.date.year,
                'Month': FR_SHORT_MONTHS[month.date.month - 1],
                'OldReading': float(month.old_reading),
                'NewReading': float(month.new_reading),
                'Consumption': float(month.consumption),
                'PricePerTon': float(price.quantize(Decimal('0.0001'), ROUND_HALF_UP)),
                'TotalPrice': float(month.total_price),
                'Status': month.status.value,
                'ISODate': month.date.isoformat(),
            })
    return rows


# -------------------- text reports --------------------

def customer_status(customer: Customer) -> str:
    n = unpaid_count(customer)
    if n == 0:
        return "all paid"
    return f"{n} unpaid month{'s' if n != 1 else ''}"


def format_statistics_report(stats: Statistics, price_per_ton: Optional[Decimal] = None) -> str:
    lines = []
    lines.append("=== WATER LEDGER STATISTICS ===")
    lines.append("")
    lines.append(f"Customers: {stats.total_customers}")
    lines.append(f"Billed months: {stats.total_months}")
    lines.append(f"Total consumption: {stats.total_consumption:.2f} t")
    lines.append(f"Average per month: {stats.avg_consumption:.2f} t")
    lines.append(f"Total revenue: {stats.total_revenue:.2f}")
    lines.append(f"  Paid: {stats.total_paid:.2f}")
    lines.append(f"  Unpaid: {stats.total_unpaid:.2f}")
    if price_per_ton is not None:
        lines.append("")
        lines.append(f"Current price per ton: {price_per_ton}")
    return "\n".join(lines)


def format_customer_report(customer: Customer) -> str:
    """Invoice-style listing of a customer's months"""
    lines = []
    lines.append(f"=== {customer.full_name} (meter {customer.meter_number}) ===")
    if customer.phone:
        lines.append(f"Phone: {customer.phone}")
    if customer.registration_date:
        lines.append(f"Registered: {customer.registration_date}")
    lines.append("")
    lines.append(f"{'#':>3}  {'Month':<16} {'Old':>10} {'New':>10} {'Cons.':>8} {'Total':>10}  Status")

    due = Decimal('0')
    for i, m in enumerate(customer.months):
        lines.append(f"{i:>3}  {m.label:<16} {m.old_reading:>10} {m.new_reading:>10} "
                     f"{m.consumption:>8} {m.total_price:>10.2f}  {m.status.value}")
        if m.status is PaymentStatus.UNPAID:
            due += m.total_price

    lines.append("")
    lines.append(f"Status: {customer_status(customer)}")
    lines.append(f"Amount due: {due:.2f}")
    return "\n".join(lines)
