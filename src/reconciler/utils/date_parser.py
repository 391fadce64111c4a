"""Date parsing utilities."""

from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser


def parse_date(date_str: str, date_format: Optional[str] = None) -> date:
    """Parse a date string into a date object.

    When ``date_format`` is given the value must match it exactly
    (``strptime`` syntax, e.g. ``"%d/%m/%Y"``). Otherwise common formats are
    recognised: "2024-01-15", "January 15, 2024", "15 Jan 2024", etc.

    Args:
        date_str: Date string
        date_format: Optional strptime pattern

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    if date_str is None or not date_str.strip():
        raise ValueError("Empty date string")

    date_str = date_str.strip()

    if date_format:
        try:
            return datetime.strptime(date_str, date_format).date()
        except ValueError as e:
            raise ValueError(f"Could not parse date '{date_str}' with format '{date_format}': {e}")

    try:
        dt = date_parser.parse(date_str)
        return dt.date()
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{date_str}': {e}")
