"""
Input Normalizers

Each source (bank CSV, import webhook, spreadsheet) is turned into
ParsedTransaction records that follow the internal sign convention.
"""

from reconciler.normalizers.bank_csv import parse_bank_csv
from reconciler.normalizers.common import ParseError
from reconciler.normalizers.spreadsheet import parse_sheet_csv
from reconciler.normalizers.webhook import (
    EmailAlertPayload,
    SimpleTransactionPayload,
    WebhookPayload,
    parse_webhook,
    resolve_webhook_payload,
)

__all__ = [
    "EmailAlertPayload",
    "ParseError",
    "SimpleTransactionPayload",
    "WebhookPayload",
    "parse_bank_csv",
    "parse_sheet_csv",
    "parse_webhook",
    "resolve_webhook_payload",
]
