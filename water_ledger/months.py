"""
Calendar month resolution for imported data.

Spreadsheets produced by hand (or by older versions of the app) name months in
French, English or Arabic, sometimes abbreviated, sometimes as numbers, and
carry dates as ISO strings, real dates or Excel serial numbers. Everything here
reduces those shapes to a UTC datetime on the first day of a calendar month.
"""

import logging
import numbers
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

# Short French labels used for spreadsheet headers and the Month column
FR_SHORT_MONTHS = ['janv.', 'févr.', 'mars', 'avr.', 'mai', 'juin',
                   'juil.', 'août', 'sept.', 'oct.', 'nov.', 'déc.']

MONTH_LABELS = {
    'fr': ['janvier', 'février', 'mars', 'avril', 'mai', 'juin', 'juillet',
           'août', 'septembre', 'octobre', 'novembre', 'décembre'],
    'en': ['January', 'February', 'March', 'April', 'May', 'June', 'July',
           'August', 'September', 'October', 'November', 'December'],
    'ar': ['يناير', 'فبراير', 'مارس', 'أبريل', 'ماي', 'يونيو', 'يوليوز',
           'غشت', 'شتنبر', 'أكتوبر', 'نونبر', 'دجنبر'],
}

# Latin aliases match as a prefix of the lower-cased text, in table order
_PREFIX_ALIASES = [
    # French, abbreviated and full, with and without accents
    ('janv', 0), ('févr', 1), ('fevr', 1), ('mars', 2), ('avr', 3), ('mai', 4),
    ('juin', 5), ('juil', 6), ('août', 7), ('aout', 7), ('sept', 8), ('oct', 9),
    ('nov', 10), ('déc', 11), ('dec', 11),
    # English
    ('jan', 0), ('feb', 1), ('mar', 2), ('apr', 3), ('may', 4), ('jun', 5),
    ('jul', 6), ('aug', 7), ('sep', 8), ('oct', 9), ('nov', 10), ('dec', 11),
]

# Arabic aliases match anywhere in the text. Moroccan names first, then the
# Middle-Eastern forms; a shorter alias never belongs to a different month.
_CONTAINS_ALIASES = [
    ('يناير', 0), ('فبراير', 1), ('مارس', 2), ('أبريل', 3), ('ابريل', 3),
    ('ماي', 4), ('يونيو', 5), ('يوليوز', 6), ('غشت', 7), ('شتنبر', 8),
    ('أكتوبر', 9), ('اكتوبر', 9), ('نونبر', 10), ('دجنبر', 11),
    ('مايو', 4), ('يوليو', 6), ('أغسطس', 7), ('اغسطس', 7), ('سبتمبر', 8),
    ('نوفمبر', 10), ('ديسمبر', 11),
]

EXCEL_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)
# Smaller numbers are not treated as serial dates (roughly before 1954)
_MIN_EXCEL_SERIAL = 20000

_YEAR_MONTH = re.compile(r'^(\d{4})[-/.](\d{1,2})$')
_MONTH_YEAR = re.compile(r'^(\d{1,2})[-/.](\d{4})$')
_LEADING_NUMBER = re.compile(r'^(\d+)')
_FOUR_DIGITS = re.compile(r'(?<!\d)(\d{4})(?!\d)')
_TWO_DIGITS = re.compile(r'(?<!\d)(\d{2})(?!\d)')


def _is_number(value) -> bool:
    return isinstance(value, (numbers.Real, Decimal)) and not isinstance(value, bool)


def month_index(value) -> int:
    """
    Map a month name or number to 0-11.

    Accepts 1-12 as numbers or numeric strings, French/English names and
    abbreviations (prefix match) and Arabic names (substring match).
    Returns -1 when nothing matches.
    """
    if value is None:
        return -1
    if _is_number(value):
        if value != value:  # NaN
            return -1
        n = int(round(float(value)))
        return n - 1 if 1 <= n <= 12 else -1

    text = str(value).strip().lower()
    if not text:
        return -1

    m = _LEADING_NUMBER.match(text)
    if m:
        n = int(m.group(1))
        if 1 <= n <= 12:
            return n - 1

    for alias, idx in _PREFIX_ALIASES:
        if text.startswith(alias):
            return idx
    for alias, idx in _CONTAINS_ALIASES:
        if alias in text:
            return idx
    return -1


def normalize_year(value) -> Optional[int]:
    """Parse a year cell; two-digit years are read as 2000+year"""
    if value is None:
        return None
    if _is_number(value):
        if value != value:  # NaN
            return None
        year = int(value)
    else:
        text = str(value).strip()
        m = _LEADING_NUMBER.match(text)
        if not m:
            return None
        year = int(m.group(1))
    return 2000 + year if year < 100 else year


def month_start(year: int, index: int) -> datetime:
    return datetime(year, index + 1, 1, tzinfo=timezone.utc)


def first_of_current_month(today: Optional[date] = None) -> datetime:
    today = today or datetime.now(timezone.utc).date()
    return month_start(today.year, today.month - 1)


def excel_serial_to_datetime(serial) -> datetime:
    """Excel serial date (days since 1899-12-30); fractions carry the time of day"""
    ms = round(float(serial) * 86400000)
    return EXCEL_EPOCH + timedelta(milliseconds=ms)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso(value: str) -> datetime:
    """Parse a stored ISO-8601 instant (the 'Z' suffix included)"""
    return as_utc(date_parser.isoparse(value))


def month_label(dt: datetime, locale: str = 'fr') -> str:
    names = MONTH_LABELS.get(locale, MONTH_LABELS['fr'])
    return f"{names[dt.month - 1]} {dt.year}"


def _from_candidate(candidate) -> Optional[datetime]:
    if isinstance(candidate, datetime):
        return as_utc(candidate)
    if isinstance(candidate, date):
        return datetime(candidate.year, candidate.month, candidate.day, tzinfo=timezone.utc)
    if _is_number(candidate):
        if float(candidate) > _MIN_EXCEL_SERIAL:
            try:
                return excel_serial_to_datetime(candidate)
            except OverflowError:
                logger.debug(f"Serial date out of range: {candidate}")
        return None
    if isinstance(candidate, str) and candidate.strip():
        text = candidate.strip()
        m = _YEAR_MONTH.match(text)
        if m:
            idx = int(m.group(2)) - 1
            if 0 <= idx < 12:
                return month_start(int(m.group(1)), idx)
        m = _MONTH_YEAR.match(text)
        if m:
            idx = int(m.group(1)) - 1
            if 0 <= idx < 12:
                return month_start(int(m.group(2)), idx)
        try:
            return as_utc(date_parser.parse(text))
        except (ValueError, OverflowError):
            logger.debug(f"Unparseable date candidate: {text!r}")
    return None


def _year_in_text(text: str) -> Optional[int]:
    m = _FOUR_DIGITS.search(text)
    if m:
        return int(m.group(1))
    two = _TWO_DIGITS.findall(text)
    if two:
        return 2000 + int(two[-1])
    return None


def try_resolve_month_year(year=None, month=None, iso_candidate=None) -> Optional[datetime]:
    """
    Resolve the billing period of an imported row, or None.

    Priority: absolute date or Excel serial in `iso_candidate`, then the
    YYYY-MM / MM-YYYY patterns, then an explicit `year` with a month name or
    number, then a month text carrying its own year ("janv.-25").
    """
    resolved = _from_candidate(iso_candidate)
    if resolved is not None:
        return resolved

    y = normalize_year(year)
    idx = month_index(month)
    if y is not None and idx >= 0:
        return month_start(y, idx)

    if month is not None and not _is_number(month):
        text = str(month)
        y = _year_in_text(text)
        if y is not None and idx >= 0:
            return month_start(y, idx)
    return None


def resolve_month_year(year=None, month=None, iso_candidate=None, today: Optional[date] = None) -> datetime:
    """Like try_resolve_month_year, falling back to the first day of the current month"""
    resolved = try_resolve_month_year(year, month, iso_candidate)
    if resolved is not None:
        return resolved
    fallback = first_of_current_month(today)
    logger.warning(f"Could not resolve month from year={year!r} month={month!r} date={iso_candidate!r}; using {fallback:%Y-%m}")
    return fallback
