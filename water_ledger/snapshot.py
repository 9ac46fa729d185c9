"""
Whole-ledger snapshot: the JSON shape used for export/import and storage.

    {"users": [Customer, ...], "pricePerTon": number}

Snapshots written by the older browser app (integer ids and meters,
Arabic status strings) load as they are. Loading is all-or-nothing: any
shape problem raises InvalidImportShape before a Ledger is built.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from .accounting import as_decimal
from .config import load_settings
from .datatypes import Customer, Ledger, Month, PaymentStatus, normalize_meter
from .errors import InvalidImportShape
from .months import first_of_current_month, parse_iso, try_resolve_month_year

logger = logging.getLogger(__name__)


def _number(value: Decimal):
    """Decimal -> JSON number, integral values without a fraction"""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _month_to_dict(month: Month) -> dict:
    return {
        'month': month.label,
        'oldReading': _number(month.old_reading),
        'newReading': _number(month.new_reading),
        'consumption': _number(month.consumption),
        'totalPrice': _number(month.total_price),
        'status': month.status.value,
        'date': month.date.isoformat(),
    }


def _customer_to_dict(customer: Customer) -> dict:
    return {
        'id': customer.id,
        'fullName': customer.full_name,
        'meterNumber': customer.meter_number,
        'phone': customer.phone,
        'registrationDate': customer.registration_date,
        'months': [_month_to_dict(m) for m in customer.months],
        'date': customer.created_at.isoformat(),
    }


def ledger_to_dict(ledger: Ledger) -> dict:
    return {
        'users': [_customer_to_dict(c) for c in ledger.customers],
        'pricePerTon': _number(ledger.price_per_ton),
    }


def dumps(ledger: Ledger) -> str:
    return json.dumps(ledger_to_dict(ledger), ensure_ascii=False, indent=2)


def loads(text: str, default_price: Optional[Decimal] = None) -> Ledger:
    try:
        data = json.loads(text, parse_float=Decimal)
    except (json.JSONDecodeError, TypeError) as e:
        raise InvalidImportShape(f"Not a JSON ledger: {e}")
    return ledger_from_dict(data, default_price)


# -------------------- validation & parsing --------------------

def _amount(value, field: str, where: str) -> Decimal:
    if value is None or value == '':
        return Decimal(0)
    if isinstance(value, bool):
        raise InvalidImportShape(f"{where}: {field} must be a number")
    try:
        amount = as_decimal(value)
    except (InvalidOperation, ValueError):
        raise InvalidImportShape(f"{where}: {field} must be a number, got {value!r}")
    if not amount.is_finite():
        raise InvalidImportShape(f"{where}: {field} must be a finite number")
    return amount


def _instant(value, where: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_iso(str(value))
    except (ValueError, OverflowError):
        logger.warning(f"{where}: unreadable date {value!r}")
        return None


def _month_from_dict(raw, where: str) -> Month:
    if not isinstance(raw, dict):
        raise InvalidImportShape(f"{where}: month entry must be an object")
    label = str(raw.get('month') or '')
    date = _instant(raw.get('date'), where)
    if date is None:
        # older snapshots only carry the display label
        date = try_resolve_month_year(month=label) or first_of_current_month()
    return Month(
        label=label,
        old_reading=_amount(raw.get('oldReading'), 'oldReading', where),
        new_reading=_amount(raw.get('newReading'), 'newReading', where),
        consumption=_amount(raw.get('consumption'), 'consumption', where),
        total_price=_amount(raw.get('totalPrice'), 'totalPrice', where),
        status=PaymentStatus.parse(raw.get('status')),
        date=date,
    )


def _customer_from_dict(raw, index: int) -> Customer:
    where = f"users[{index}]"
    if not isinstance(raw, dict):
        raise InvalidImportShape(f"{where} must be an object")
    full_name = str(raw.get('fullName') or '').strip()
    meter = normalize_meter(raw.get('meterNumber'))
    months = raw.get('months')
    if not full_name or not meter or meter == '0':
        raise InvalidImportShape(f"{where}: fullName and meterNumber are required")
    if not isinstance(months, list):
        raise InvalidImportShape(f"{where}: months must be a list")

    created_at = _instant(raw.get('date'), where) or datetime.now(timezone.utc)
    customer_id = raw.get('id')
    return Customer(
        id=str(customer_id) if customer_id not in (None, '') else uuid.uuid4().hex,
        full_name=full_name,
        meter_number=meter,
        phone=str(raw.get('phone') or ''),
        registration_date=str(raw.get('registrationDate') or ''),
        months=[_month_from_dict(m, f"{where}.months[{i}]") for i, m in enumerate(months)],
        created_at=created_at,
    )


def ledger_from_dict(data, default_price: Optional[Decimal] = None) -> Ledger:
    """Validate a snapshot dict and build a Ledger from it"""
    if not isinstance(data, dict) or not isinstance(data.get('users'), list):
        raise InvalidImportShape("Snapshot must be an object with a 'users' list")

    customers = [_customer_from_dict(raw, i) for i, raw in enumerate(data['users'])]

    # the older app could save customers without any month; they cannot be billed
    empty = [c for c in customers if not c.months]
    if empty:
        logger.warning(f"Skipped {len(empty)} customers without months: "
                       f"{', '.join(c.full_name for c in empty)}")
        customers = [c for c in customers if c.months]

    seen = {}
    for c in customers:
        if c.meter_number in seen:
            raise InvalidImportShape(f"Meter number {c.meter_number} appears twice ({seen[c.meter_number]}, {c.full_name})")
        seen[c.meter_number] = c.full_name

    if data.get('pricePerTon') in (None, ''):
        price = default_price if default_price is not None else load_settings().default_price_per_ton
    else:
        price = _amount(data['pricePerTon'], 'pricePerTon', 'snapshot')
        if price < 0:
            raise InvalidImportShape("pricePerTon must not be negative")

    logger.info(f"Loaded snapshot with {len(customers)} customers, price per ton {price}")
    return Ledger(customers=customers, price_per_ton=price)
