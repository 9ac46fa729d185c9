"""
Customer and billing-month operations.

Each function validates its input against the ledger first and only then
mutates it, so a raised LedgerError always leaves the ledger untouched.
Persisting the result is the caller's job (see store.LedgerStore.commit).
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from .accounting import as_decimal, compute_new_month, is_rollback, recompute_last_month
from .config import load_settings
from .datatypes import Customer, Ledger, Month, PaymentStatus, normalize_meter
from .errors import (
    DuplicateMeter, InvalidPrice, InvalidReading, LastMonthProtected, MissingField,
    MonthAlreadyExists, NotFound, RollbackNotConfirmed,
)
from .months import month_label

logger = logging.getLogger(__name__)

SORT_KEYS = ('name', 'meter', 'reading', 'status', 'unpaid')


def _label_locale() -> str:
    return load_settings().month_locale


def _require_customer(ledger: Ledger, customer_id: str) -> Customer:
    customer = ledger.find(customer_id)
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found")
    return customer


def _require_month_index(customer: Customer, month_index: int) -> None:
    if not 0 <= month_index < len(customer.months):
        raise NotFound(f"Customer {customer.full_name} has no month #{month_index}")


def _check_meter_free(ledger: Ledger, meter_number: str, exclude_id: Optional[str] = None) -> None:
    owner = ledger.find_by_meter(meter_number)
    if owner is not None and owner.id != exclude_id:
        raise DuplicateMeter(meter_number, owner.full_name)


def _check_reading(value) -> Decimal:
    try:
        reading = as_decimal(value)
    except ArithmeticError:
        raise InvalidReading(f"Reading {value!r} is not a number")
    if not reading.is_finite() or reading < 0:
        raise InvalidReading(f"Reading {value!r} must be a non-negative number")
    return reading


def _check_required(full_name: str, meter_number: str) -> None:
    if not full_name:
        raise MissingField("Full name is required")
    if not meter_number:
        raise MissingField("Meter number is required")


def find_customer(ledger: Ledger, customer_id: str) -> Customer:
    return _require_customer(ledger, customer_id)


def add_customer(ledger: Ledger, full_name: str, meter_number, initial_reading,
                 phone: str = '', registration_date: str = '',
                 now: Optional[datetime] = None) -> Customer:
    """
    Register a customer with one seeded UNPAID month.

    The seed month starts from a zero reading, so its consumption is the
    whole initial reading, priced at the current global price.
    """
    full_name = (full_name or '').strip()
    meter = normalize_meter(meter_number)
    _check_required(full_name, meter)
    _check_meter_free(ledger, meter)
    reading = _check_reading(initial_reading)

    now = now or datetime.now(timezone.utc)
    amounts = compute_new_month(Decimal(0), reading, ledger.price_per_ton)
    seed = Month(
        label=month_label(now, _label_locale()),
        old_reading=Decimal(0),
        new_reading=reading,
        consumption=amounts.consumption,
        total_price=amounts.total_price,
        status=PaymentStatus.UNPAID,
        date=now,
    )
    customer = Customer(
        id=uuid.uuid4().hex,
        full_name=full_name,
        meter_number=meter,
        phone=(phone or '').strip(),
        registration_date=registration_date or '',
        months=[seed],
        created_at=now,
    )
    ledger.customers.append(customer)
    logger.info(f"Added customer {full_name} (meter {meter}) with reading {reading}")
    return customer


def edit_customer(ledger: Ledger, customer_id: str, full_name: str, meter_number,
                  phone: str, registration_date: str, current_reading,
                  allow_rollback: bool = False) -> Customer:
    """
    Update a customer's fields and correct the reading of its last month.

    The last month keeps its own effective price; the global price only
    applies when that month has no consumption to infer a price from.
    """
    customer = _require_customer(ledger, customer_id)
    full_name = (full_name or '').strip()
    meter = normalize_meter(meter_number)
    _check_required(full_name, meter)
    _check_meter_free(ledger, meter, exclude_id=customer.id)
    reading = _check_reading(current_reading)

    last = customer.last_month
    reading_changed = reading != last.new_reading
    if reading_changed and is_rollback(last.old_reading, reading) and not allow_rollback:
        raise RollbackNotConfirmed(last.old_reading, reading)

    customer.full_name = full_name
    customer.meter_number = meter
    customer.phone = (phone or '').strip()
    customer.registration_date = registration_date or ''
    if reading_changed:
        recompute_last_month(last, reading, ledger.price_per_ton)
    logger.info(f"Edited customer {full_name} (meter {meter}); last month now {last.consumption} t / {last.total_price}")
    return customer


def delete_customer(ledger: Ledger, customer_id: str) -> Customer:
    customer = _require_customer(ledger, customer_id)
    ledger.customers.remove(customer)
    logger.info(f"Deleted customer {customer.full_name} with {len(customer.months)} months")
    return customer


def next_month_date(customer: Customer) -> datetime:
    """Calendar month following the customer's last billing period"""
    return customer.last_month.date + relativedelta(months=1)


def add_month(ledger: Ledger, customer_id: str, new_reading,
              allow_rollback: bool = False) -> Month:
    """
    Append the next calendar month to a customer, priced at the global price.

    Raises RollbackNotConfirmed when the reading is lower than the previous
    one; call again with allow_rollback=True once the user has confirmed.
    """
    customer = _require_customer(ledger, customer_id)
    next_date = next_month_date(customer)
    label = month_label(next_date, _label_locale())

    key = (next_date.year, next_date.month - 1)
    if key in customer.month_keys():
        raise MonthAlreadyExists(label)

    reading = _check_reading(new_reading)
    old_reading = customer.last_month.new_reading
    if is_rollback(old_reading, reading) and not allow_rollback:
        raise RollbackNotConfirmed(old_reading, reading)

    amounts = compute_new_month(old_reading, reading, ledger.price_per_ton)
    month = Month(
        label=label,
        old_reading=old_reading,
        new_reading=reading,
        consumption=amounts.consumption,
        total_price=amounts.total_price,
        status=PaymentStatus.UNPAID,
        date=next_date,
    )
    customer.months.append(month)
    logger.info(f"Added month {label} for {customer.full_name}: {month.consumption} t, {month.total_price}")
    return month


def delete_month(ledger: Ledger, customer_id: str, month_index: int) -> Month:
    customer = _require_customer(ledger, customer_id)
    _require_month_index(customer, month_index)
    if len(customer.months) <= 1:
        raise LastMonthProtected()
    month = customer.months.pop(month_index)
    logger.info(f"Deleted month {month.label} of {customer.full_name}")
    return month


def toggle_month_status(ledger: Ledger, customer_id: str, month_index: int) -> Month:
    customer = _require_customer(ledger, customer_id)
    _require_month_index(customer, month_index)
    month = customer.months[month_index]
    month.status = month.status.toggled()
    logger.info(f"Month {month.label} of {customer.full_name} is now {month.status.value}")
    return month


def change_global_price(ledger: Ledger, new_price) -> Decimal:
    """Set the price for future months; existing totals are left as billed"""
    try:
        price = as_decimal(new_price)
    except ArithmeticError:
        raise InvalidPrice(f"Price {new_price!r} is not a number")
    if not price.is_finite() or price < 0:
        raise InvalidPrice(f"Price {new_price!r} must be a non-negative number")
    old = ledger.price_per_ton
    ledger.price_per_ton = price
    logger.info(f"Global price per ton changed from {old} to {price}")
    return price


# -------------------- listing helpers --------------------

def has_unpaid(customer: Customer) -> bool:
    return any(m.status is PaymentStatus.UNPAID for m in customer.months)


def unpaid_count(customer: Customer) -> int:
    return sum(1 for m in customer.months if m.status is PaymentStatus.UNPAID)


def search_customers(ledger: Ledger, term: str = '',
                     status: Optional[PaymentStatus] = None) -> List[Customer]:
    """
    Filter customers by name/meter substring and payment status.

    status=PAID keeps customers whose months are all paid, status=UNPAID
    keeps customers with at least one unpaid month.
    """
    term = (term or '').strip().lower()
    out = []
    for c in ledger.customers:
        if term and term not in c.full_name.lower() and term not in c.meter_number.lower():
            continue
        if status is PaymentStatus.PAID and has_unpaid(c):
            continue
        if status is PaymentStatus.UNPAID and not has_unpaid(c):
            continue
        out.append(c)
    return out


def sort_customers(ledger: Ledger, key: str = 'name', descending: bool = False) -> List[Customer]:
    """Reorder the ledger's customers in place"""
    if key == 'name':
        sort_key = lambda c: c.full_name.lower()
    elif key == 'meter':
        sort_key = lambda c: (len(c.meter_number), c.meter_number)
    elif key == 'reading':
        sort_key = lambda c: c.last_month.new_reading
    elif key == 'status':
        sort_key = lambda c: has_unpaid(c)
    elif key == 'unpaid':
        sort_key = unpaid_count
    else:
        raise ValueError(f"Unknown sort key {key!r}; expected one of {', '.join(SORT_KEYS)}")
    ledger.customers.sort(key=sort_key, reverse=descending)
    return ledger.customers
