# ==============================================================================
# compsense/calculator/utils.py
# ------------------------------------------------------------------------------
# Small numeric and calendar helpers shared by the engine modules.
# ==============================================================================

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

import pandas as pd

from .errors import ValidationError

TWO_PLACES = Decimal('0.01')


def to_decimal(value, field_name='value'):
    """Converts numbers and numeric strings (commas allowed) to Decimal."""
    if isinstance(value, Decimal):
        return value
    if value is None or (isinstance(value, float) and pd.isna(value)):
        raise ValidationError(f"'{field_name}' is required", details={'field': field_name})
    try:
        return Decimal(str(value).replace(',', '').strip())
    except InvalidOperation:
        raise ValidationError(f"'{field_name}' must be a number, got {value!r}", details={'field': field_name})


def round2(value):
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def round_int(value):
    """Half-up rounding to an integer (0.5 goes up, unlike the built-in round)."""
    return int(to_decimal(value).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def round_score(value, places=1):
    if value is None:
        return None
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def clamp(value, low, high):
    return max(low, min(high, value))


def to_date(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()


def add_months(start, months):
    """
    Calendar-month arithmetic. Day-of-month is clipped to the end of shorter
    months (Jan 31 + 1 month -> Feb 28/29).
    """
    return (pd.Timestamp(start) + pd.DateOffset(months=months)).date()


def months_between(start, end):
    """Whole calendar months elapsed from start to end (0 if end precedes start)."""
    start, end = to_date(start), to_date(end)
    if end < start:
        return 0
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if add_months(start, months) > end:
        months -= 1
    return months
