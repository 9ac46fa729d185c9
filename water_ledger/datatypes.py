from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple
from datetime import datetime, timezone

Money = Decimal       # totals are kept to the cent
Reading = Decimal     # cumulative meter value


class PaymentStatus(str, Enum):
    PAID = "PAID"
    UNPAID = "UNPAID"

    def toggled(self) -> "PaymentStatus":
        return PaymentStatus.UNPAID if self is PaymentStatus.PAID else PaymentStatus.PAID

    @classmethod
    def parse(cls, value) -> "PaymentStatus":
        """Read a status written by any version of the app; unknown means UNPAID"""
        if isinstance(value, PaymentStatus):
            return value
        text = str(value or '').strip().lower()
        return cls.PAID if text in _PAID_WORDS else cls.UNPAID


# 'غير مدفوعة' (unpaid) contains 'مدفوعة' (paid), so only exact words count
_PAID_WORDS = {'paid', 'payé', 'payée', 'paye', 'payee', 'مدفوعة', 'مدفوع', 'oui', 'yes', 'true'}


@dataclass
class Month:
    label: str                   # "janvier 2024"
    old_reading: Reading         # previous cumulative value
    new_reading: Reading         # current cumulative value
    consumption: Decimal         # max(0, new - old)
    total_price: Money           # consumption * price in effect for this month
    status: PaymentStatus
    date: datetime               # UTC, identifies the calendar month

    @property
    def key(self) -> Tuple[int, int]:
        """(year, month index 0-11) of the billing period"""
        return self.date.year, self.date.month - 1


@dataclass
class Customer:
    id: str
    full_name: str
    meter_number: str
    months: List[Month] = field(default_factory=list)
    phone: str = ""
    registration_date: str = ""  # as entered, usually YYYY-MM-DD
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def last_month(self) -> Month:
        return self.months[-1]

    def month_keys(self) -> set:
        return {m.key for m in self.months}


@dataclass
class Ledger:
    customers: List[Customer] = field(default_factory=list)
    price_per_ton: Money = Decimal("5")   # applies to new months only

    def find(self, customer_id: str) -> Optional[Customer]:
        for c in self.customers:
            if c.id == customer_id:
                return c
        return None

    def find_by_meter(self, meter_number: str) -> Optional[Customer]:
        for c in self.customers:
            if c.meter_number == meter_number:
                return c
        return None


def normalize_meter(value) -> str:
    """Meter numbers compare as text; 12, 12.0 and ' 12 ' are the same meter"""
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    if text.endswith('.0') and text[:-2].isdigit():
        text = text[:-2]
    return text
