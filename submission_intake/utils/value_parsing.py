"""Lenient coercion of extracted values.

Model output and regex matches arrive as loosely formatted strings
("$1,250,000", "80%", "01/15/2025"); these helpers turn them into numbers
and dates, returning None when a value cannot be read.
"""

import re
from datetime import date, datetime
from typing import Any, Optional

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%m.%d.%Y",
    "%Y/%m/%d",
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%b. %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
)

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_MULTIPLIERS = {"k": 1_000, "m": 1_000_000, "mm": 1_000_000, "b": 1_000_000_000}


def parse_number(value: Any) -> Optional[float]:
    """Read a number from ints, floats or strings like "$1.2M" or "(5,000)"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    text = value.strip().lower().replace(",", "").replace("$", "").replace("%", "")
    negative = text.startswith("(") and text.endswith(")")
    text = text.strip("()").strip()

    match = _NUMBER.search(text)
    if not match:
        return None
    number = float(match.group(0))

    suffix = text[match.end():].strip().split(" ")[0] if match.end() < len(text) else ""
    if suffix in _MULTIPLIERS:
        number *= _MULTIPLIERS[suffix]
    return -number if negative else number


def parse_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if "T" in text and len(text) >= 10:
        text = text[:10]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def normalize_date_string(value: str) -> str:
    """ISO-format ``value`` when it parses as a date, else return it stripped."""
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else value.strip()


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in ("", "null", "none", "n/a", "na", "unknown", "not found", "-")
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False
