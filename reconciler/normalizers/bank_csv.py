"""
Bank CSV Normalizer

Reads a bank's CSV export (a header row with a transaction or posting date,
a description and an amount).

SIGN CONVENTION: bank exports show charges as negative numbers. The
internal convention is the opposite, so every amount is negated here:
"-45.67" becomes +4567 cents (expense) and "100.00" becomes -10000 (credit).
"""

from reconciler.models.results import ParseBatch, ParsedTransaction
from reconciler.normalizers.common import (
    ParseError,
    US_DATE_PATTERN,
    find_column,
    parse_money,
    parse_us_date,
    read_csv,
    to_cents,
)


EXPECTED_COLUMNS = "Posting Date (or Transaction Date), Description, Amount"


def _locate_columns(header: list[str]) -> tuple[int, int, int]:
    date_idx = find_column(header, r"transaction\s*date")
    if date_idx is None:
        date_idx = find_column(header, r"posting\s*date")
    description_idx = find_column(header, r"description")
    amount_idx = next(
        (i for i, name in enumerate(header) if name.lower() == "amount"),
        None,
    )

    if date_idx is None or description_idx is None or amount_idx is None:
        raise ParseError(
            f"CSV format not recognized. Found columns: {', '.join(header)}. "
            f"Expected: {EXPECTED_COLUMNS}"
        )
    return date_idx, description_idx, amount_idx


def parse_bank_csv(text: str) -> ParseBatch:
    """
    Normalize a bank CSV export.

    Row problems are collected as "Row N: ..." messages (N is the line
    number in the file, header = 1) and do not stop the other rows.

    Raises:
        ParseError: If the file has no data rows or the header is not recognized
    """
    header, rows = read_csv(text)
    if not rows:
        raise ParseError("CSV file is empty or has no data rows")

    date_idx, description_idx, amount_idx = _locate_columns(header)
    needed = max(date_idx, description_idx, amount_idx) + 1

    batch = ParseBatch()
    for line_number, row in enumerate(rows, start=2):
        if len(row) < needed:
            batch.errors.append(f"Row {line_number}: Missing columns")
            continue

        raw_date = row[date_idx]
        if not US_DATE_PATTERN.match(raw_date):
            batch.errors.append(f"Row {line_number}: Invalid date format")
            continue
        tx_date = parse_us_date(raw_date)
        if tx_date is None:
            batch.errors.append(f"Row {line_number}: Invalid date")
            continue

        amount = parse_money(row[amount_idx])
        if amount is None:
            batch.errors.append(f"Row {line_number}: Invalid amount")
            continue

        description = row[description_idx]
        if not description:
            batch.errors.append(f"Row {line_number}: Missing description")
            continue

        amount_cents = -to_cents(amount)
        batch.transactions.append(ParsedTransaction(
            amount_cents=amount_cents,
            merchant=description[:300],
            date=tx_date,
            is_credit=amount_cents < 0,
            raw=",".join(row),
        ))

    return batch
