"""
Shared parsing helpers for the input normalizers.

Every normalizer ends in the same place: a ParsedTransaction whose
amount_cents follows the internal sign convention. These helpers cover
the pieces the sources have in common (CSV reading, money strings,
US-style dates).
"""

import csv
import io
import re
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional


class ParseError(Exception):
    """A source payload could not be normalized at all."""

    def __init__(self, message: str, details: Optional[list[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


US_DATE_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2,4})$")

MONTHS = {
    name: index
    for index, name in enumerate(
        [
            "january", "february", "march", "april", "may", "june",
            "july", "august", "september", "october", "november", "december",
        ],
        start=1,
    )
}


def read_csv(text: str) -> tuple[list[str], list[list[str]]]:
    """
    Split CSV text into a header row and data rows.

    Quoted fields, embedded commas and CRLF line endings are handled by
    the csv module. Blank lines are dropped.
    """
    text = text.lstrip("\ufeff")
    reader = csv.reader(io.StringIO(text))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows:
        return [], []
    header = [cell.strip() for cell in rows[0]]
    return header, [[cell.strip() for cell in row] for row in rows[1:]]


def to_cents(value: Decimal) -> int:
    """Round a currency amount to whole cents."""
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_money(text: str) -> Optional[Decimal]:
    """
    Parse a money string such as "$1,234.56", "-45.67" or "(12.00)".

    Parentheses mean a negative amount (accounting notation).
    Returns None when the text is not a number.
    """
    cleaned = text.strip().replace("$", "").replace(",", "").replace(" ", "")
    if not cleaned:
        return None

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return -value if negative else value


def parse_us_date(text: str) -> Optional[date]:
    """
    Parse MM/DD/YYYY or MM/DD/YY (two-digit years are 20YY).

    Returns None for text in another shape or for an impossible date.
    """
    match = US_DATE_PATTERN.match(text.strip())
    if not match:
        return None
    month, day, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def find_column(header: list[str], pattern: str) -> Optional[int]:
    """Index of the first header matching a case-insensitive regex."""
    regex = re.compile(pattern, re.IGNORECASE)
    for index, name in enumerate(header):
        if regex.search(name):
            return index
    return None
