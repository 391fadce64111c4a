"""Utility functions for reconciler."""

from reconciler.utils.date_parser import parse_date
from reconciler.utils.amount_parser import parse_amount, to_minor_units
from reconciler.utils.column_mapping import suggest_column_mapping

__all__ = ["parse_date", "parse_amount", "to_minor_units", "suggest_column_mapping"]
