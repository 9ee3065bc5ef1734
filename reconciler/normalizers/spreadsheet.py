"""
Spreadsheet Normalizer

Parses the CSV export of a hand-maintained spreadsheet. People type these
sheets themselves, so the parser is forgiving: headers are matched loosely,
dates may be US-style or ISO or anything dateutil understands, and rows that
don't parse are skipped without complaint.

The sheet already uses the internal sign convention: a positive amount is an
expense, a negative or parenthesized amount is money coming in.
"""

import re
from datetime import date
from typing import Optional

from dateutil import parser as date_parser

from reconciler.models.results import ParseBatch, ParsedTransaction
from reconciler.normalizers.common import (
    ParseError,
    parse_money,
    parse_us_date,
    read_csv,
    to_cents,
)


ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_sheet_date(text: str) -> Optional[date]:
    """Try M/D/YY(YY), then YYYY-MM-DD, then dateutil."""
    parsed = parse_us_date(text)
    if parsed:
        return parsed

    if ISO_DATE_PATTERN.match(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None

    try:
        return date_parser.parse(text).date()
    except (ValueError, OverflowError):
        return None


def _column(header: list[str], *needles: str) -> Optional[int]:
    for index, name in enumerate(header):
        if any(needle in name for needle in needles):
            return index
    return None


def parse_sheet_csv(text: str) -> ParseBatch:
    """
    Normalize a spreadsheet CSV export.

    An empty sheet is a valid, empty batch.

    Raises:
        ParseError: If a date, description or amount column can't be found
    """
    header, rows = read_csv(text)
    if not rows:
        return ParseBatch()

    header = [name.lower() for name in header]
    date_idx = _column(header, "date")
    description_idx = _column(header, "description", "merchant", "name")
    amount_idx = _column(header, "amount")

    if date_idx is None or description_idx is None or amount_idx is None:
        raise ParseError(
            f"Missing required columns. Found: {', '.join(header)}. "
            "Need: Date, Description, Amount"
        )

    batch = ParseBatch()
    for row in rows:
        cells = [
            row[idx] if idx < len(row) else ""
            for idx in (date_idx, description_idx, amount_idx)
        ]
        raw_date, description, raw_amount = cells
        if not raw_date or not description or not raw_amount:
            continue

        tx_date = parse_sheet_date(raw_date)
        amount = parse_money(raw_amount)
        if tx_date is None or amount is None:
            continue

        amount_cents = to_cents(amount)
        batch.transactions.append(ParsedTransaction(
            amount_cents=amount_cents,
            merchant=description[:300],
            date=tx_date,
            is_credit=amount_cents < 0,
        ))

    return batch
