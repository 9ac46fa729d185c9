from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from .datatypes import Money, Month


@dataclass
class MonthAmounts:
    consumption: Decimal
    total_price: Money


def compute_new_month(old_reading, new_reading, price) -> MonthAmounts:
    """Consumption and price of a fresh month at the given price per ton"""
    consumption = consumption_between(old_reading, new_reading)
    return MonthAmounts(consumption=consumption, total_price=round_money(consumption * as_decimal(price)))


def consumption_between(old_reading, new_reading) -> Decimal:
    # meter rollback clamps to zero; confirming it is the caller's business
    return max(Decimal(0), as_decimal(new_reading) - as_decimal(old_reading))


def is_rollback(old_reading, new_reading) -> bool:
    return as_decimal(new_reading) < as_decimal(old_reading)


def effective_price(month: Month, fallback_price) -> Decimal:
    """
    Price per ton locked into a month.

    Reconstructed as total / consumption so that a later change of the
    global price never leaks into an already billed month. Months without
    consumption carry no price information and use `fallback_price`.
    """
    if month.consumption > 0:
        return as_decimal(month.total_price) / as_decimal(month.consumption)
    return as_decimal(fallback_price)


def recompute_last_month(month: Month, new_reading, fallback_price) -> Month:
    """Apply a corrected reading to a month, keeping its effective price"""
    price = effective_price(month, fallback_price)
    month.new_reading = as_decimal(new_reading)
    month.consumption = consumption_between(month.old_reading, month.new_reading)
    month.total_price = round_money(month.consumption * price)
    return month


def as_decimal(x) -> Decimal:
    """Decimal from user or spreadsheet input; floats go through str to stay exact"""
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def round_money(x):  # round 2dp HALF_UP
    return Decimal(x).quantize(Decimal('0.01'), ROUND_HALF_UP)
