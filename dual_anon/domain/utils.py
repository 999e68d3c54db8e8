"""Domain Utilities - value parsing helpers shared by the generalizers.

Security Impact:
    - No security impact - pure parsing functions
    - Callers must not log the values passed in (they may be birth dates)
"""

import re
import warnings
from datetime import date, datetime
from typing import Optional

import pandas as pd

# Tried in order before falling back to pandas' parser
DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y-%m",
)

LEADING_INTEGER_PATTERN = re.compile(r"^\s*(\d+)")
YEAR_PATTERN = re.compile(r"\d{4}")


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a date-like string.

    Accepts ISO dates, ISO datetimes, a handful of day-first formats and
    anything pandas can read. Day-first is assumed for ambiguous
    "NN/NN/NNNN" inputs.

    Parameters:
        value: Raw date string

    Returns:
        date if the value could be parsed, None otherwise
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    # Without a four-digit year the fallback parser invents one
    if not YEAR_PATTERN.search(text):
        return None

    try:
        with warnings.catch_warnings():
            # pandas warns when it has to guess the format; the guess is the point here
            warnings.simplefilter("ignore")
            parsed = pd.to_datetime(text, errors="coerce", dayfirst=True)
    except (ValueError, TypeError, OverflowError):
        return None

    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


def parse_age(value: Optional[str]) -> Optional[int]:
    """Parse an age value into whole years.

    "45", "45.7", "45 years" all give 45. Negative or non-numeric values give None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        age = int(float(text))
    except (ValueError, OverflowError):
        match = LEADING_INTEGER_PATTERN.match(text)
        if not match:
            return None
        age = int(match.group(1))

    if age < 0:
        return None
    return age
