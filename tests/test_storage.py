"""Tests for the storage backends."""

import pytest
from datetime import date
from unittest.mock import MagicMock
from uuid import uuid4

import gspread

from reconciler.config.settings import GoogleSheetsSettings
from reconciler.models.audit import AuditEventBuilder
from reconciler.models.ledger import (
    CategoryType,
    Event,
    Family,
    ImportSource,
    MerchantCategory,
    MerchantRule,
    Transaction,
)
from reconciler.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    NotFoundError,
    StorageError,
)
from reconciler.services.storage.google_sheets import SheetTable


class FakeWorksheet:
    """Just enough of gspread.Worksheet, backed by a list of rows."""

    def __init__(self):
        self.values: list[list[str]] = []

    def append_row(self, row, value_input_option=None):
        self.values.append([str(v) for v in row])

    def append_rows(self, rows, value_input_option=None):
        for row in rows:
            self.append_row(row)

    def get_all_values(self):
        return [list(row) for row in self.values]

    def update(self, range_name, values, value_input_option=None):
        row_number = int(range_name[1:])
        self.values[row_number - 1] = [str(v) for v in values[0]]

    def delete_rows(self, row_number):
        del self.values[row_number - 1]


class UnavailableWorksheet(FakeWorksheet):
    """A worksheet whose reads fail the way the Sheets API does."""

    def get_all_values(self):
        response = MagicMock()
        response.json.return_value = {
            "error": {"code": 503, "message": "The service is unavailable.", "status": "UNAVAILABLE"}
        }
        raise gspread.exceptions.APIError(response)


class FakeSheetsClient:
    def __init__(self):
        self.settings = GoogleSheetsSettings.model_construct(
            credentials_path="unused.json",
            spreadsheet_id="test",
        )
        self.sheets: dict[str, FakeWorksheet] = {}

    def get_worksheet(self, title, columns, rows=1000):
        if title not in self.sheets:
            sheet = FakeWorksheet()
            sheet.append_row(columns)
            self.sheets[title] = sheet
        return self.sheets[title]


def make_tx(family_id, account_id, external_id, **fields):
    values = dict(
        family_id=family_id,
        account_id=account_id,
        external_id=external_id,
        amount=1599,
        name="NETFLIX",
        date=date(2024, 6, 15),
    )
    values.update(fields)
    return Transaction(**values)


@pytest.fixture
def sheets_client():
    return FakeSheetsClient()


@pytest.fixture
def sheets_storage(sheets_client):
    return GoogleSheetsLedgerStorage(sheets_client)


class TestSheetTable:
    """Tests for row conversion."""

    def test_category_row_round_trip(self, sheets_client):
        table = SheetTable(sheets_client, "MerchantCategories", MerchantCategory)
        category = MerchantCategory(
            family_id=uuid4(),
            name="Groceries",
            keywords=["safeway", "kroger"],
            category_type=CategoryType.BUDGET,
            monthly_budget=60000,
        )

        row = table.to_row(category)
        assert row[table.columns.index("keywords")] == '["safeway", "kroger"]'
        assert row[table.columns.index("event_id")] == ""

        restored = table.from_row(table.columns, row)
        assert restored == category

    def test_bools_written_lowercase(self, sheets_client):
        table = SheetTable(sheets_client, "Transactions", Transaction)
        tx = make_tx(uuid4(), uuid4(), "csv-1", is_hidden=True)

        row = table.to_row(tx)

        assert row[table.columns.index("is_hidden")] == "true"
        assert row[table.columns.index("skip_auto_match")] == "false"
        assert table.from_row(table.columns, row).is_hidden is True

    def test_malformed_rows_skipped(self, sheets_client):
        table = SheetTable(sheets_client, "Families", Family)
        family = Family(name="Smiths", monthly_budget=100000)
        table.append([family])
        sheets_client.sheets["Families"].append_row(["not-a-uuid", "x"])

        assert [record.id for _, record in table.read_all()] == [family.id]


class TestGoogleSheetsLedgerStorage:
    """Tests for GoogleSheetsLedgerStorage against a fake worksheet."""

    @pytest.mark.asyncio
    async def test_virtual_account_upsert(self, sheets_storage):
        family_id = uuid4()
        first, created = await sheets_storage.upsert_virtual_account(
            family_id, ImportSource.CSV, "CSV Import"
        )
        again, created_again = await sheets_storage.upsert_virtual_account(
            family_id, ImportSource.CSV, "CSV Import"
        )
        assert created is True
        assert created_again is False
        assert again.id == first.id

    @pytest.mark.asyncio
    async def test_duplicate_external_id_rejected(self, sheets_storage):
        family_id, account_id = uuid4(), uuid4()
        await sheets_storage.insert_transactions([make_tx(family_id, account_id, "csv-1")])

        with pytest.raises(DuplicateError):
            await sheets_storage.insert_transactions([
                make_tx(family_id, account_id, "csv-2"),
                make_tx(family_id, account_id, "csv-1"),
            ])
        assert len(await sheets_storage.list_transactions(family_id)) == 1

    @pytest.mark.asyncio
    async def test_exclusive_link(self, sheets_storage):
        family_id, account_id = uuid4(), uuid4()
        first = make_tx(family_id, account_id, "csv-1")
        second = make_tx(family_id, account_id, "csv-2")
        await sheets_storage.insert_transactions([first, second])
        event = Event(family_id=family_id, title="Netflix", event_date=date(2024, 6, 1))
        await sheets_storage.save_event(event)

        linked = await sheets_storage.link_transaction(family_id, first.id, event.id)
        assert linked.linked_event_id == event.id

        with pytest.raises(DuplicateError):
            await sheets_storage.link_transaction(family_id, second.id, event.id)
        await sheets_storage.link_transaction(family_id, second.id, event.id, exclusive=False)

        assert await sheets_storage.linked_event_ids(family_id) == {event.id}

    @pytest.mark.asyncio
    async def test_family_scoping(self, sheets_storage):
        owner, other = uuid4(), uuid4()
        tx = make_tx(owner, uuid4(), "csv-1")
        await sheets_storage.insert_transactions([tx])

        assert await sheets_storage.get_transaction(other, tx.id) is None
        with pytest.raises(NotFoundError):
            await sheets_storage.unlink_transaction(other, tx.id)

    @pytest.mark.asyncio
    async def test_delete_category_clears_tag(self, sheets_storage):
        family_id = uuid4()
        category = MerchantCategory(
            family_id=family_id,
            name="Streaming",
            keywords=["netflix"],
            category_type=CategoryType.BUDGET,
            monthly_budget=2000,
        )
        await sheets_storage.save_category(category)
        tx = make_tx(family_id, uuid4(), "csv-1", category_id=category.id)
        await sheets_storage.insert_transactions([tx])

        with pytest.raises(DuplicateError):
            await sheets_storage.save_category(category.model_copy(update={"id": uuid4(), "name": "STREAMING"}))

        assert await sheets_storage.delete_category(family_id, category.id) is True
        assert (await sheets_storage.get_transaction(family_id, tx.id)).category_id is None
        assert await sheets_storage.list_categories(family_id) == []


    @pytest.mark.asyncio
    async def test_lookup_read_failures_are_storage_errors(self, sheets_client, sheets_storage):
        sheets_client.sheets["Families"] = UnavailableWorksheet()
        sheets_client.sheets["Events"] = UnavailableWorksheet()
        family = Family(name="Smiths", monthly_budget=100000)

        with pytest.raises(StorageError):
            await sheets_storage.get_family(family.id)
        with pytest.raises(StorageError):
            await sheets_storage.save_family(family)
        with pytest.raises(StorageError):
            await sheets_storage.save_event(
                Event(family_id=family.id, title="Netflix", event_date=date(2024, 6, 1))
            )


class TestGoogleSheetsAuditStorage:
    @pytest.mark.asyncio
    async def test_events_read_back(self, sheets_client):
        storage = GoogleSheetsAuditStorage(sheets_client)
        event = AuditEventBuilder.webhook_rejected("10.0.0.1")
        await storage.append_event(event)

        [restored] = await storage.get_recent_events()

        assert restored.event_id == event.event_id
        assert restored.event_type == event.event_type
        assert restored.details == {"remote_addr": "10.0.0.1"}
        assert restored.family_id is None


class TestInMemoryLedgerStorage:
    @pytest.mark.asyncio
    async def test_rule_keywords_unique_per_family(self):
        storage = InMemoryLedgerStorage()
        family_id, event_id = uuid4(), uuid4()
        await storage.save_rule(MerchantRule(family_id=family_id, keyword="zelle", event_id=event_id))

        with pytest.raises(DuplicateError):
            await storage.save_rule(MerchantRule(family_id=family_id, keyword="zelle", event_id=event_id))
        # Another family may reuse the keyword
        await storage.save_rule(MerchantRule(family_id=uuid4(), keyword="zelle", event_id=event_id))
