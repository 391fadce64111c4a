"""Column mapping suggestions for file previews."""

from typing import Sequence

# Ordered buckets of keyword alternatives; an alternative matches when all of
# its keywords occur in the header. postDate must precede date so that
# "Post Date" is not taken as the transaction date.
_BUCKETS: list[tuple[str, tuple[tuple[str, ...], ...]]] = [
    ("postDate", (("post", "date"),)),
    ("date", (("date",),)),
    ("description", (("desc",),)),
    ("amount", (("amount",), ("sum",), ("value",), ("price",))),
    ("reference", (("ref",), ("number",), ("id",), ("trans",))),
    ("currency", (("curr",),)),
]


def _classify(header: str) -> str | None:
    for field_name, alternatives in _BUCKETS:
        for keywords in alternatives:
            if all(keyword in header for keyword in keywords):
                return field_name
    return None


def suggest_column_mapping(headers: Sequence[str]) -> dict[str, int]:
    """Guess which column holds each canonical field.

    Only meant to pre-fill a mapping for a user to confirm. Each column maps
    to at most one field and the first column claiming a field keeps it.

    Args:
        headers: Header row of the file

    Returns:
        Dict of canonical field name to column index
    """
    suggestions: dict[str, int] = {}
    for index, header in enumerate(headers):
        if not header or not header.strip():
            continue
        field_name = _classify(header.strip().lower())
        if field_name is not None and field_name not in suggestions:
            suggestions[field_name] = index
    return suggestions
