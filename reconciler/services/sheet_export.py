"""
Public Spreadsheet Export

Downloads a publicly shared Google spreadsheet as CSV through its export
URL. No credentials are involved: the sheet must be shared as
"Anyone with the link can view".
"""

import re
from typing import Optional

import requests
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reconciler.config import get_settings


logger = structlog.get_logger()

SHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
EXPORT_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/export?format=csv"


class SheetFetchError(Exception):
    """The spreadsheet export could not be downloaded."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class _TransientFetchError(SheetFetchError):
    """Network failure or 5xx worth retrying."""
    pass


def extract_sheet_id(url: str) -> Optional[str]:
    """
    Pull the spreadsheet id out of a Google Sheets URL.

    Example:
        https://docs.google.com/spreadsheets/d/abc-123_X/edit#gid=0 -> "abc-123_X"
    """
    match = SHEET_ID_PATTERN.search(url)
    return match.group(1) if match else None


class SheetExportService:
    """Fetches CSV text for a public spreadsheet."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self._session = session or requests.Session()
        self._timeout = timeout or get_settings().imports.sheet_export_timeout_seconds

    @retry(
        retry=retry_if_exception_type(_TransientFetchError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def fetch_csv(self, sheet_id: str) -> str:
        """
        Download the first worksheet of a public spreadsheet as CSV.

        Raises:
            SheetFetchError: 404, 403, or any other non-success response
        """
        url = EXPORT_URL.format(sheet_id=sheet_id)
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as e:
            logger.warning("sheet_export_request_failed", sheet_id=sheet_id, error=str(e))
            raise _TransientFetchError(f"Failed to fetch sheet: {e}")

        if response.status_code == 404:
            raise SheetFetchError(
                "Sheet not found. Make sure the URL is correct.",
                status_code=404,
            )
        if response.status_code == 403:
            raise SheetFetchError(
                "Cannot access sheet. Make sure it's shared as "
                "\"Anyone with the link can view\".",
                status_code=403,
            )
        if response.status_code >= 500:
            raise _TransientFetchError(
                f"Failed to fetch sheet: {response.status_code}",
                status_code=response.status_code,
            )
        if not response.ok:
            raise SheetFetchError(
                f"Failed to fetch sheet: {response.status_code}",
                status_code=response.status_code,
            )

        return response.text
