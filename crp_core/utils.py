"""
Utility functions used throughout the ledger engine.

Centralizes currency rounding, decimal coercion and financial year
arithmetic so models, services and serializers share one definition.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Tuple

from dateutil.relativedelta import relativedelta

from .constants import DEFAULT_FY_START_MONTH


def round_decimal(value: Decimal, precision: str = '0.01') -> Decimal:
    """
    Rounds a Decimal to given precision using ROUND_HALF_UP method.

    Args:
        value (Decimal): The decimal number to round.
        precision (str): The decimal precision (default: 2 places).

    Returns:
        Decimal: Rounded decimal.
    """
    return value.quantize(Decimal(precision), rounding=ROUND_HALF_UP)


def minor_unit(decimal_places: int = 2) -> str:
    """Quantize exponent for a currency with the given number of decimal places ('0.01' for 2)."""
    if decimal_places <= 0:
        return '1'
    return '0.' + '0' * (decimal_places - 1) + '1'


def to_decimal(value, default: Optional[Decimal] = None) -> Decimal:
    """
    Converts int/str/Decimal input to an unrounded Decimal.

    Floats go through str() so 0.1 becomes Decimal('0.1') rather than its binary expansion.
    Raises ValueError for unparseable input unless a default is given.
    """
    if isinstance(value, Decimal):
        return value
    if value is None or value == '':
        if default is not None:
            return default
        raise ValueError("Cannot convert an empty value to Decimal.")
    try:
        return Decimal(str(value))
    except (ValueError, TypeError, InvalidOperation):
        if default is not None:
            return default
        raise ValueError(f"'{value}' is not a valid decimal number.")


def financial_year_bounds(for_date: date, start_month: int = DEFAULT_FY_START_MONTH) -> Tuple[date, date]:
    """
    Returns the (start, end) dates of the financial year containing for_date.

    Args:
        for_date (date): Any date inside the financial year.
        start_month (int): Month the financial year begins (1-12).
    """
    fy_start = date(for_date.year, start_month, 1)
    if for_date < fy_start:
        fy_start = date(for_date.year - 1, start_month, 1)
    fy_end = fy_start + relativedelta(years=1, days=-1)
    return fy_start, fy_end


def financial_year_label(for_date: date, start_month: int = DEFAULT_FY_START_MONTH) -> str:
    """
    Label of the financial year containing for_date, e.g. "2024-25".
    Calendar financial years (start_month=1) are labelled by the single year, e.g. "2024".
    """
    fy_start, fy_end = financial_year_bounds(for_date, start_month)
    if fy_start.year == fy_end.year:
        return str(fy_start.year)
    return f"{fy_start.year}-{str(fy_end.year)[-2:]}"


def short_year(financial_year: str) -> str:
    """Two-digit year used in rendered document numbers: "2024-25" -> "24"."""
    return financial_year.split('-')[0][-2:]
