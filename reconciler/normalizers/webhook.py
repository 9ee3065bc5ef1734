"""
Webhook Normalizer

The import webhook accepts two shapes of payload:

1. Simple transaction (automation tools, Apps Script):
    {"amount": 45.67, "merchant": "Starbucks", "date": "2024-01-15",
     "card_last4": "1234", "type": "charge"}

2. Card alert email (forwarding services, inbound mail relays):
    {"subject": "Your $45.67 transaction with STARBUCKS",
     "body": "... card ending in 1234 ...", "from": "alerts@bank.com"}
   Relays that post form fields may send "body-plain" or "text"
   instead of "body".

DESIGN DECISION: The shape is resolved once, at the boundary, into one
of two pydantic models. Each model normalizes itself into the same
ParsedTransaction, so ingestion never sees the difference.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reconciler.models.results import ParsedTransaction
from reconciler.normalizers.common import MONTHS, ParseError, to_cents


EMAIL_KEYS = ("subject", "body", "body-plain", "text")
SIMPLE_KEYS = ("amount", "merchant")

AMOUNT_PATTERN = re.compile(r"\$([0-9,]+\.?\d*)")
MERCHANT_PATTERN = re.compile(
    r"transaction with\s+(.+?)(?:\s+on|\s+has|\.|$)", re.IGNORECASE
)
CARD_PATTERN = re.compile(r"(?:ending in|card.*?\()\s*(\d{4})", re.IGNORECASE)
CREDIT_PATTERN = re.compile(r"credit|refund|returned", re.IGNORECASE)
FILLER_WORDS_PATTERN = re.compile(r"transaction|with|at|from", re.IGNORECASE)
CARD_SUFFIX_PATTERN = re.compile(r"^\d{4}$")

DATE_PATTERNS = [
    re.compile(r"on\s+(\d{1,2}/\d{1,2}/\d{2,4})", re.IGNORECASE),
    re.compile(r"(\d{1,2}/\d{1,2}/\d{2,4})"),
    re.compile(
        r"on\s+(January|February|March|April|May|June|July|August|September"
        r"|October|November|December)\s+(\d{1,2}),?\s*(\d{4})",
        re.IGNORECASE,
    ),
]

UNKNOWN_MERCHANT = "Unknown Merchant"


def clean_merchant(merchant: str) -> str:
    """Collapse whitespace, drop punctuation other than & ' -, cap at 100 chars."""
    merchant = re.sub(r"\s+", " ", merchant)
    merchant = re.sub(r"[^\w\s&'-]", "", merchant).strip()[:100]
    if not merchant or merchant.lower() == "unknown":
        return UNKNOWN_MERCHANT
    return merchant


def _date_from_match(match: re.Match) -> Optional[date]:
    groups = match.groups()
    try:
        if "/" in groups[0]:
            month, day, year = (int(part) for part in groups[0].split("/"))
            if year < 100:
                year += 2000
            return date(year, month, day)
        return date(int(groups[2]), MONTHS[groups[0].lower()], int(groups[1]))
    except ValueError:
        return None


def find_alert_date(subject: str, body: str) -> Optional[date]:
    """
    First date found in an alert, trying each pattern against the body
    and then the subject. Returns None when nothing usable is found.
    """
    for pattern in DATE_PATTERNS:
        match = pattern.search(body) or pattern.search(subject)
        if match:
            found = _date_from_match(match)
            if found:
                return found
    return None


class EmailAlertPayload(BaseModel):
    """A forwarded card alert email."""
    model_config = ConfigDict(str_strip_whitespace=True)

    subject: str = ""
    body: str = ""
    sender: Optional[str] = Field(default=None, alias="from")

    def to_parsed(self, today: Optional[date] = None) -> ParsedTransaction:
        """
        Extract the transaction from the alert text.

        The amount is required; merchant, card suffix and date are
        best-effort (date falls back to today).

        Raises:
            ParseError: If no positive dollar amount appears in the subject
        """
        amount_match = AMOUNT_PATTERN.search(self.subject)
        if not amount_match:
            raise ParseError("Could not find amount in email")

        try:
            amount = to_cents(Decimal(amount_match.group(1).replace(",", "")))
        except InvalidOperation:
            raise ParseError("Invalid amount")
        if amount <= 0:
            raise ParseError("Invalid amount")

        merchant = UNKNOWN_MERCHANT
        merchant_match = MERCHANT_PATTERN.search(self.subject)
        if merchant_match:
            merchant = merchant_match.group(1).strip()
        else:
            after_amount = self.subject.split(amount_match.group(0), 1)[1]
            words = FILLER_WORDS_PATTERN.sub("", after_amount).strip()
            if words:
                merchant = re.split(r"\s+on\s+", words)[0].strip() or UNKNOWN_MERCHANT
        merchant = clean_merchant(merchant)

        card_match = CARD_PATTERN.search(self.body)
        is_credit = bool(
            CREDIT_PATTERN.search(self.subject) or CREDIT_PATTERN.search(self.body)
        )

        return ParsedTransaction(
            amount_cents=-amount if is_credit else amount,
            merchant=merchant,
            date=find_alert_date(self.subject, self.body) or today or date.today(),
            card_last4=card_match.group(1) if card_match else None,
            is_credit=is_credit,
            raw=f"Subject: {self.subject}\n\nBody: {self.body[:500]}",
        )


class SimpleTransactionPayload(BaseModel):
    """A pre-structured transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Union[float, int, str, None] = None
    merchant: Optional[str] = None
    date_text: Optional[str] = Field(default=None, alias="date")
    card_last4: Optional[str] = None
    type: Optional[str] = None

    def _amount_cents(self) -> int:
        if self.amount is None:
            raise ParseError("Invalid amount")
        raw = self.amount
        if isinstance(raw, str):
            raw = raw.replace("$", "").replace(",", "")
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            raise ParseError("Invalid amount")
        if not value.is_finite():
            raise ParseError("Invalid amount")
        cents = to_cents(value)
        if cents <= 0:
            raise ParseError("Invalid amount")
        return cents

    def _date(self, today: Optional[date]) -> date:
        if not self.date_text:
            return today or date.today()
        try:
            return date.fromisoformat(self.date_text)
        except ValueError:
            pass
        try:
            return date_parser.parse(self.date_text).date()
        except (ValueError, OverflowError):
            raise ParseError(f"Invalid date: {self.date_text}")

    def to_parsed(self, today: Optional[date] = None) -> ParsedTransaction:
        """
        Raises:
            ParseError: Non-positive or unreadable amount, missing merchant
        """
        amount = self._amount_cents()
        if not self.merchant:
            raise ParseError("Merchant is required")

        is_credit = (self.type or "").lower() == "credit"
        card = self.card_last4 if self.card_last4 and CARD_SUFFIX_PATTERN.match(self.card_last4) else None

        return ParsedTransaction(
            amount_cents=-amount if is_credit else amount,
            merchant=self.merchant[:300],
            date=self._date(today),
            card_last4=card,
            is_credit=is_credit,
        )


WebhookPayload = Union[EmailAlertPayload, SimpleTransactionPayload]


def resolve_webhook_payload(data: Mapping[str, Any]) -> WebhookPayload:
    """
    Decide which payload shape a webhook body is.

    Any email field wins over the simple fields.

    Raises:
        ParseError: If the body is neither shape, or a field has the wrong type
    """
    try:
        if any(key in data for key in EMAIL_KEYS):
            body = data.get("body") or data.get("body-plain") or data.get("text") or ""
            return EmailAlertPayload.model_validate({
                "subject": str(data.get("subject") or ""),
                "body": str(body),
                "from": data.get("from"),
            })

        if any(key in data for key in SIMPLE_KEYS):
            fields = {
                key: data.get(key)
                for key in ("amount", "merchant", "date", "card_last4", "type")
            }
            for key in ("merchant", "date", "card_last4", "type"):
                if fields[key] is not None:
                    fields[key] = str(fields[key])
            return SimpleTransactionPayload.model_validate(fields)
    except ValidationError as e:
        loc = e.errors()[0]["loc"]
        field = str(loc[0]) if loc else "body"
        raise ParseError(f"Invalid request format: invalid {field}") from e

    raise ParseError("Invalid request format. Expected email or transaction data.")


def parse_webhook(data: Mapping[str, Any], today: Optional[date] = None) -> ParsedTransaction:
    """Resolve and normalize a webhook body in one step."""
    return resolve_webhook_payload(data).to_parsed(today)
