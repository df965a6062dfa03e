"""Helpers for normalizing and formatting spending values."""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any

_UNITS = [
    (Decimal("1e12"), "trillion", "T"),
    (Decimal("1e9"), "billion", "B"),
    (Decimal("1e6"), "million", "M"),
    (Decimal("1e3"), "thousand", "k"),
]

# Columns carrying raw cents. Anything aliased *_dollars is already converted.
_CURRENCY_NAMES = {"amount", "spending", "total_spending"}
_CURRENCY_SUFFIXES = ("_amount", "_spending")

_DATE_NAMES = {"date", "month", "week", "quarter", "day"}
_DATE_SUFFIXES = ("_date", "_month", "_week", "_quarter", "_day")

_ISO_DATE_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:[T ].*)?$")


def is_currency_field(field_name: str) -> bool:
    """True for columns that hold cent amounts by naming convention."""
    name = field_name.lower()
    return name in _CURRENCY_NAMES or name.endswith(_CURRENCY_SUFFIXES)


def is_date_field(field_name: str) -> bool:
    name = field_name.lower()
    return name in _DATE_NAMES or name.endswith(_DATE_SUFFIXES)


def cents_to_dollars(value: Any) -> Any:
    """Divide a numeric cent value by 100; non-numeric values pass through."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return float(value / 100)
    if isinstance(value, (int, float)):
        return round(value / 100, 2)
    if isinstance(value, str):
        try:
            return round(float(value) / 100, 2)
        except ValueError:
            return value
    return value


def to_iso_date(value: Any) -> Any:
    """Render a date-like value as ``YYYY-MM-DD``.

    Accepts ``date``/``datetime`` objects and ISO strings such as
    ``2022-08-12T00:00:00.000Z`` or ``2022-08-12 00:00:00+00``. Values that do
    not look like dates are returned unchanged.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        match = _ISO_DATE_PREFIX.match(value.strip())
        if match:
            return match.group(1)
    return value


def humanize_number(
    value: int | float | Decimal,
    short: bool = False,
    decimals: int = 1
) -> str:
    """Format a number with human-readable units.

    Args:
        value: The number to format
        short: If True, use short suffixes (k, M, B, T) instead of full words
        decimals: Number of decimal places to show
    """
    d = Decimal(str(value))
    sign = "-" if d < 0 else ""
    d = abs(d)

    def _format_plain_number() -> str:
        if d == d.to_integral():
            return f"{sign}{int(d):,}"
        return f"{sign}{d:,.2f}"

    if d < Decimal("1e4"):
        return _format_plain_number()

    for threshold, long_name, short_name in _UNITS:
        if d >= threshold:
            if short:
                return f"{sign}{(d / threshold):.{decimals}f}{short_name}"
            return f"{sign}{(d / threshold):.{decimals}f} {long_name}"

    return _format_plain_number()
