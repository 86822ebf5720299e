"""
Value Normalizer
================

Numeric and string sanitization primitives shared by every pipeline stage.

Transcribed score tables are noisy: blank cells come back as assorted dash
characters, digits arrive full-width, and dates are frequently partial
("2024年5月", or just "2024"). These helpers turn such fragments into plain
Python values or None.

Tradeoffs:
----------
1. Out-of-range values are discarded, never clipped to the boundary.
   A 4-subject score of 612 is not "500-ish"; it is a misread.

2. Partial dates default to the start of the period (day 1, month 1).
   This keeps records orderable. Callers must treat day-level precision
   of such dates as approximate.
"""

import math
import re
import unicodedata
from datetime import date
from typing import Any, Optional, Union

Number = Union[int, float]

# Characters a blank table cell comes back as after transcription
BLANK_CELL_MARKERS = frozenset({
    "",
    "-",        # hyphen-minus
    "‐",   # hyphen
    "‒",   # figure dash
    "–",   # en dash
    "—",   # em dash
    "―",   # horizontal bar
    "−",   # minus sign
    "－",   # full-width hyphen-minus
    "ー",   # katakana long vowel mark (common OCR substitute)
})

MIN_YEAR = 2000
MAX_YEAR = 2100

_FULL_DATE = re.compile(r"(\d{4})\s*[年/.\-]\s*(\d{1,2})\s*[月/.\-]\s*(\d{1,2})")
_YEAR_MONTH = re.compile(r"(\d{4})\s*[年/.\-]\s*(\d{1,2})(?!\d)")
_BARE_YEAR = re.compile(r"(?<!\d)(\d{4})(?!\d)")

_NUMBER = re.compile(r"[-+]?\d+(?:\.\d+)?")


def clamp_to_range(value: Any, minimum: Number, maximum: Number) -> Optional[Number]:
    """
    Return value unchanged when it lies within [minimum, maximum], else None.

    Non-numeric input (including bool and NaN) is treated as out of range.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    if value < minimum or value > maximum:
        return None
    return value


def dash_to_null(value: Any) -> Any:
    """Map a lone dash / empty string (a blank source cell) to None."""
    if isinstance(value, str) and value.strip() in BLANK_CELL_MARKERS:
        return None
    return value


def to_number(value: Any) -> Optional[Number]:
    """
    Coerce a cell value into an int or float.

    Accepts numbers and numeric strings (full-width digits, thousands
    separators and trailing units such as 点 are tolerated). Integral
    values come back as int.

    Returns:
        The number, or None when no number can be read
    """
    value = dash_to_null(value)
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = unicodedata.normalize("NFKC", value).replace(",", "").strip()
        match = _NUMBER.search(text)
        if not match:
            return None
        number = float(match.group(0))
    else:
        return None

    if not math.isfinite(number):
        return None
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def _iso_or_none(year: int, month: int, day: int) -> Optional[str]:
    if year < MIN_YEAR or year > MAX_YEAR:
        return None
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_loose_date(text: Any) -> Optional[str]:
    """
    Parse a possibly partial date fragment into an ISO date string.

    Tried in order:
    1. year-month-day ("2024/5/12", "2024年5月12日", "2024-05-12")
    2. year-month, day defaults to 1 ("2024年5月", "2024/05")
    3. bare 4-digit year in [2000, 2100], month and day default to 1

    Args:
        text: Date fragment as transcribed

    Returns:
        "YYYY-MM-DD", or None if nothing usable was found
    """
    if text is None:
        return None
    if isinstance(text, date):
        return text.isoformat()
    normalized = unicodedata.normalize("NFKC", str(text))

    match = _FULL_DATE.search(normalized)
    if match:
        parsed = _iso_or_none(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed

    match = _YEAR_MONTH.search(normalized)
    if match:
        parsed = _iso_or_none(int(match.group(1)), int(match.group(2)), 1)
        if parsed:
            return parsed

    for match in _BARE_YEAR.finditer(normalized):
        parsed = _iso_or_none(int(match.group(1)), 1, 1)
        if parsed:
            return parsed

    return None


def normalize_transcript(text: Optional[str]) -> str:
    """
    Prepare raw transcription text for row matching.

    NFKC-normalizes (full-width digits, ideographic spaces, full-width
    pipes and dashes) and unifies line endings.
    """
    if not text:
        return ""
    normalized = unicodedata.normalize("NFKC", text)
    return normalized.replace("\r\n", "\n").replace("\r", "\n")
