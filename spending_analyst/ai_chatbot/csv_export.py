"""CSV serialization and file naming for bulk downloads."""
from __future__ import annotations

import csv
import io
import math
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from spending_analyst.core.formatting import is_date_field, to_iso_date

_NON_SLUG = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_UNSAFE_FILENAME = re.compile(r'["\\/\r\n]')


def _csv_value(value: Any) -> Any:
    # QUOTE_NONNUMERIC leaves int/float/Decimal bare and quotes everything else.
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float, Decimal)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def format_export_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Render date and month style fields as ``YYYY-MM-DD`` for spreadsheets."""
    return {
        key: to_iso_date(value) if is_date_field(key) else value
        for key, value in row.items()
    }


def convert_to_csv(rows: Sequence[Mapping[str, Any]], columns: Optional[Iterable[str]] = None) -> str:
    """Serialize rows to CSV text.

    Headers and text are always quoted with embedded quotes doubled, numbers
    are written bare, and missing values become an empty quoted field. Rows are
    separated by ``\\n`` with no trailing newline.
    """
    if not rows:
        return ""

    headers = list(columns) if columns else list(rows[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_csv_value(row.get(header)) for header in headers])

    content = buffer.getvalue()
    return content[:-1] if content.endswith("\n") else content


def _slug(text: str, length: int) -> str:
    cleaned = _NON_SLUG.sub("", text.lower())
    return _WHITESPACE.sub("_", cleaned)[:length]


def generate_filename(query: str, entity_context: Optional[str] = None, today: Optional[date] = None) -> str:
    """``texas_doge_<question slug>[_<context slug>]_<YYYY-MM-DD>`` (no extension)."""
    filename = _slug(query, 50)
    if entity_context:
        filename = f"{filename}_{_slug(entity_context, 20)}"
    stamp = (today or datetime.now(timezone.utc).date()).isoformat()
    return f"texas_doge_{filename}_{stamp}"


def ensure_csv_extension(filename: str) -> str:
    """Make ``filename`` safe for a Content-Disposition header and end it in .csv."""
    cleaned = _UNSAFE_FILENAME.sub("", filename or "").strip() or "texas_doge_export"
    return cleaned if cleaned.lower().endswith(".csv") else f"{cleaned}.csv"


def format_estimated_size(estimated_rows: int, column_count: int = 10) -> str:
    """Rough download size assuming ~20 characters per field."""
    size_kb = math.ceil((estimated_rows * column_count * 20) / 1024)
    if size_kb < 1024:
        return f"~{size_kb} KB"
    return f"~{size_kb / 1024:.1f} MB"
