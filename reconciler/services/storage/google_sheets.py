"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as a storage backend because:
1. A family can inspect their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Each entity lives in its own worksheet. The columns are the model's
field names, so a row round-trips through model_dump(mode="json") and
model_validate. List fields (category keywords) are JSON-encoded.

TRADEOFFS:
- Not suitable for high-volume data (fine for one household)
- No transactions: uniqueness checks and the exclusive link are
  check-then-write, serialized only within this process by a lock
- Limited query capabilities (we filter in Python)
"""

import asyncio
import json
from datetime import date, datetime
from typing import Any, Optional, Type, TypeVar
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from reconciler.config import get_settings
from reconciler.models.audit import AuditEvent, AuditEventType, AuditSeverity
from reconciler.models.ledger import (
    CategoryType,
    Event,
    Family,
    ImportSource,
    MerchantCategory,
    MerchantRule,
    SavingsGoal,
    Transaction,
    VirtualAccount,
)
from reconciler.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


ModelT = TypeVar("ModelT", bound=BaseModel)

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "family_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get a worksheet by title, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class SheetTable:
    """
    One worksheet holding one model type, one record per row.

    Column 0 is always the record id.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        title: str,
        model: Type[ModelT],
    ):
        self._client = client
        self._title = title
        self._model = model
        self.columns = list(model.model_fields.keys())
        self._json_columns = {
            name for name, field in model.model_fields.items()
            if getattr(field.annotation, "__origin__", None) in (list, dict)
        }

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._title, self.columns)

    def to_row(self, record: BaseModel) -> list:
        data = record.model_dump(mode="json")
        row = []
        for column in self.columns:
            value = data.get(column)
            if value is None:
                row.append("")
            elif isinstance(value, bool):
                row.append("true" if value else "false")
            elif isinstance(value, (list, dict)):
                row.append(json.dumps(value))
            else:
                row.append(str(value))
        return row

    def from_row(self, header: list[str], row: list[str]) -> BaseModel:
        data: dict[str, Any] = {}
        for column, value in zip(header, row):
            if column not in self._model.model_fields or value == "":
                continue
            if column in self._json_columns:
                value = json.loads(value)
            data[column] = value
        return self._model.model_validate(data)

    def read_all(self) -> list[tuple[int, BaseModel]]:
        """All parseable records with their 1-based sheet row numbers."""
        values = self._sheet().get_all_values()
        if not values:
            return []
        header = values[0]
        records = []
        for idx, row in enumerate(values[1:], start=2):
            if not row or not row[0]:
                continue
            try:
                records.append((idx, self.from_row(header, row)))
            except (ValueError, json.JSONDecodeError):
                continue  # Skip malformed rows
        return records

    def find(self, record_id: UUID) -> Optional[tuple[int, BaseModel]]:
        for idx, record in self.read_all():
            if record.id == record_id:
                return idx, record
        return None

    def append(self, records: list[BaseModel]) -> None:
        if records:
            self._sheet().append_rows(
                [self.to_row(r) for r in records],
                value_input_option="RAW",
            )

    def replace(self, row_number: int, record: BaseModel) -> None:
        self._sheet().update(
            range_name=f"A{row_number}",
            values=[self.to_row(record)],
            value_input_option="RAW",
        )

    def delete(self, row_number: int) -> None:
        self._sheet().delete_rows(row_number)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Every gspread call is wrapped so callers only ever see StorageError
    subclasses.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        names = self._client.settings
        self._families = SheetTable(self._client, names.families_sheet_name, Family)
        self._accounts = SheetTable(self._client, names.accounts_sheet_name, VirtualAccount)
        self._transactions = SheetTable(
            self._client, names.transactions_sheet_name, Transaction
        )
        self._events = SheetTable(self._client, names.events_sheet_name, Event)
        self._categories = SheetTable(
            self._client, names.categories_sheet_name, MerchantCategory
        )
        self._rules = SheetTable(self._client, names.rules_sheet_name, MerchantRule)
        self._goals = SheetTable(self._client, names.goals_sheet_name, SavingsGoal)
        self._lock = asyncio.Lock()

    def _family_records(self, table: SheetTable, family_id: UUID) -> list[tuple[int, Any]]:
        try:
            return [
                (idx, record)
                for idx, record in table.read_all()
                if record.family_id == family_id
            ]
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to read sheet: {e}")

    def _find(self, table: SheetTable, record_id: UUID) -> Optional[tuple[int, Any]]:
        try:
            return table.find(record_id)
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to read sheet: {e}")

    def _find_owned(self, table: SheetTable, family_id: UUID, record_id: UUID):
        for idx, record in self._family_records(table, family_id):
            if record.id == record_id:
                return idx, record
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _write(self, action, *args) -> None:
        try:
            action(*args)
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to write sheet: {e}")

    # Families

    async def get_family(self, family_id: UUID) -> Optional[Family]:
        found = self._find(self._families, family_id)
        return found[1] if found else None

    async def save_family(self, family: Family) -> Family:
        found = self._find(self._families, family.id)
        if found:
            self._write(self._families.replace, found[0], family)
        else:
            self._write(self._families.append, [family])
        return family

    # Virtual accounts

    async def upsert_virtual_account(
        self,
        family_id: UUID,
        source: ImportSource,
        name: str,
        mask: Optional[str] = None,
    ) -> tuple[VirtualAccount, bool]:
        async with self._lock:
            for _, account in self._family_records(self._accounts, family_id):
                if account.source == source:
                    return account, False
            account = VirtualAccount(
                family_id=family_id,
                source=source,
                name=name,
                mask=mask,
            )
            self._write(self._accounts.append, [account])
            return account, True

    async def mark_account_synced(self, family_id: UUID, account_id: UUID) -> None:
        found = self._find_owned(self._accounts, family_id, account_id)
        if not found:
            raise NotFoundError(f"Account not found: {account_id}")
        idx, account = found
        synced = account.model_copy(update={"last_synced_at": datetime.utcnow()})
        self._write(self._accounts.replace, idx, synced)

    # Transactions

    async def insert_transactions(self, transactions: list[Transaction]) -> int:
        async with self._lock:
            try:
                existing = {tx.external_id for _, tx in self._transactions.read_all()}
            except gspread.exceptions.APIError as e:
                raise StorageError(f"Failed to read transactions: {e}")
            batch_ids = set()
            for tx in transactions:
                if tx.external_id in existing or tx.external_id in batch_ids:
                    raise DuplicateError(f"Duplicate external id: {tx.external_id}")
                batch_ids.add(tx.external_id)
            # append_rows is a single API call, so the batch lands whole or not at all
            self._write(self._transactions.append, transactions)
            return len(transactions)

    async def get_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        found = self._find_owned(self._transactions, family_id, transaction_id)
        return found[1] if found else None

    async def list_transactions(
        self,
        family_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        linked: Optional[bool] = None,
        include_hidden: bool = True,
        category_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        results = []
        for _, tx in self._family_records(self._transactions, family_id):
            if date_from and tx.date < date_from:
                continue
            if date_to and tx.date > date_to:
                continue
            if linked is not None and tx.is_linked != linked:
                continue
            if not include_hidden and tx.is_hidden:
                continue
            if category_id and tx.category_id != category_id:
                continue
            results.append(tx)
        return results

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        found = self._find_owned(self._transactions, transaction.family_id, transaction.id)
        if not found:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        self._write(self._transactions.replace, found[0], transaction)
        return transaction

    async def link_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
        event_id: UUID,
        exclusive: bool = True,
    ) -> Transaction:
        async with self._lock:
            records = self._family_records(self._transactions, family_id)
            target = None
            for idx, tx in records:
                if tx.id == transaction_id:
                    target = (idx, tx)
                elif exclusive and tx.linked_event_id == event_id:
                    raise DuplicateError(
                        f"Event {event_id} is already linked to transaction {tx.id}"
                    )
            if target is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")

            idx, tx = target
            linked = tx.model_copy(update={"linked_event_id": event_id})
            self._write(self._transactions.replace, idx, linked)
            return linked

    async def unlink_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
    ) -> Transaction:
        found = self._find_owned(self._transactions, family_id, transaction_id)
        if not found:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        idx, tx = found
        unlinked = tx.model_copy(update={"linked_event_id": None})
        self._write(self._transactions.replace, idx, unlinked)
        return unlinked

    async def linked_event_ids(self, family_id: UUID) -> set[UUID]:
        return {
            tx.linked_event_id
            for _, tx in self._family_records(self._transactions, family_id)
            if tx.linked_event_id is not None
        }

    # Events

    async def get_event(self, family_id: UUID, event_id: UUID) -> Optional[Event]:
        found = self._find_owned(self._events, family_id, event_id)
        return found[1] if found else None

    async def list_events(
        self,
        family_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Event]:
        events = [
            e for _, e in self._family_records(self._events, family_id)
            if (date_from is None or e.event_date >= date_from)
            and (date_to is None or e.event_date <= date_to)
        ]
        events.sort(key=lambda e: e.event_date)
        return events

    async def save_event(self, event: Event) -> Event:
        if self._find(self._events, event.id):
            raise DuplicateError(f"Event already exists: {event.id}")
        self._write(self._events.append, [event])
        return event

    async def update_event(self, event: Event) -> Event:
        found = self._find_owned(self._events, event.family_id, event.id)
        if not found:
            raise NotFoundError(f"Event not found: {event.id}")
        self._write(self._events.replace, found[0], event)
        return event

    # Categories

    async def list_categories(
        self,
        family_id: UUID,
        category_type: Optional[CategoryType] = None,
    ) -> list[MerchantCategory]:
        return [
            c for _, c in self._family_records(self._categories, family_id)
            if category_type is None or c.category_type == category_type
        ]

    async def get_category(
        self,
        family_id: UUID,
        category_id: UUID,
    ) -> Optional[MerchantCategory]:
        found = self._find_owned(self._categories, family_id, category_id)
        return found[1] if found else None

    def _check_category_name(self, category: MerchantCategory) -> None:
        for _, other in self._family_records(self._categories, category.family_id):
            if other.id != category.id and other.name.lower() == category.name.lower():
                raise DuplicateError(f"Category name already exists: {category.name}")

    async def save_category(self, category: MerchantCategory) -> MerchantCategory:
        async with self._lock:
            self._check_category_name(category)
            self._write(self._categories.append, [category])
            return category

    async def update_category(self, category: MerchantCategory) -> MerchantCategory:
        async with self._lock:
            found = self._find_owned(self._categories, category.family_id, category.id)
            if not found:
                raise NotFoundError(f"Category not found: {category.id}")
            self._check_category_name(category)
            self._write(self._categories.replace, found[0], category)
            return category

    async def delete_category(self, family_id: UUID, category_id: UUID) -> bool:
        found = self._find_owned(self._categories, family_id, category_id)
        if not found:
            return False
        for idx, tx in self._family_records(self._transactions, family_id):
            if tx.category_id == category_id:
                self._write(
                    self._transactions.replace,
                    idx,
                    tx.model_copy(update={"category_id": None}),
                )
        self._write(self._categories.delete, found[0])
        return True

    # Legacy rules

    async def list_rules(self, family_id: UUID) -> list[MerchantRule]:
        return [r for _, r in self._family_records(self._rules, family_id)]

    async def save_rule(self, rule: MerchantRule) -> MerchantRule:
        async with self._lock:
            for _, other in self._family_records(self._rules, rule.family_id):
                if other.keyword == rule.keyword:
                    raise DuplicateError(f"Rule keyword already exists: {rule.keyword}")
            self._write(self._rules.append, [rule])
            return rule

    async def delete_rule(self, family_id: UUID, rule_id: UUID) -> bool:
        found = self._find_owned(self._rules, family_id, rule_id)
        if not found:
            return False
        self._write(self._rules.delete, found[0])
        return True

    # Savings goals

    async def get_goal(self, family_id: UUID, goal_id: UUID) -> Optional[SavingsGoal]:
        found = self._find_owned(self._goals, family_id, goal_id)
        return found[1] if found else None

    async def list_goals(self, family_id: UUID) -> list[SavingsGoal]:
        return [g for _, g in self._family_records(self._goals, family_id)]

    async def save_goal(self, goal: SavingsGoal) -> SavingsGoal:
        self._write(self._goals.append, [goal])
        return goal

    async def update_goal(self, goal: SavingsGoal) -> SavingsGoal:
        found = self._find_owned(self._goals, goal.family_id, goal.id)
        if not found:
            raise NotFoundError(f"Savings goal not found: {goal.id}")
        self._write(self._goals.replace, found[0], goal)
        return goal


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            family_id=UUID(safe_get(4)) if safe_get(4) else None,
            entity_type=safe_get(5) or None,
            entity_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            rows = self._sheet().get_all_values()[1:]
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except ValueError:
                    continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._read_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
