"""Tests for ingestion, deduplication and the import flow."""

import pytest
from datetime import date

from reconciler.ingestion import TransactionImporter, fingerprint, make_external_id
from reconciler.models.audit import AuditEventType
from reconciler.models.ledger import EventStatus, ImportSource
from reconciler.models.results import ParsedTransaction
from reconciler.orchestrator import ImportFlow
from reconciler.services.sheet_export import SheetFetchError
from reconciler.services.storage import InMemoryLedgerStorage, StorageError


BANK_CSV = "\n".join([
    "Details,Posting Date,Description,Amount,Type,Balance,Check or Slip #",
    "DEBIT,06/15/2024,NETFLIX.COM,-15.99,DEBIT_CARD,1000.00,,",
    "DEBIT,06/16/2024,WHOLE FOODS,-82.10,DEBIT_CARD,917.90,,",
    "CREDIT,06/17/2024,PAYROLL,2500.00,ACH_CREDIT,3417.90,,",
])


def parsed(merchant: str, amount: int, tx_date: date, card=None) -> ParsedTransaction:
    return ParsedTransaction(
        amount_cents=amount,
        merchant=merchant,
        date=tx_date,
        card_last4=card,
        is_credit=amount < 0,
    )


class FailingInsertStorage(InMemoryLedgerStorage):
    async def insert_transactions(self, transactions):
        raise StorageError("write rejected")


class FakeSheetService:
    def __init__(self, text: str = "", error: SheetFetchError = None):
        self.text = text
        self.error = error
        self.requested = []

    def fetch_csv(self, sheet_id: str) -> str:
        self.requested.append(sheet_id)
        if self.error:
            raise self.error
        return self.text


class TestFingerprint:
    def test_fingerprint_lowercases_name(self):
        assert fingerprint(1599, "NETFLIX", date(2024, 6, 15)) == "1599|netflix|2024-06-15"

    def test_external_id_prefix(self):
        external_id = make_external_id(ImportSource.GOOGLE_SHEET)
        assert external_id.startswith("sheet-")
        assert external_id != make_external_id(ImportSource.GOOGLE_SHEET)


class TestTransactionImporter:
    """Tests for TransactionImporter."""

    @pytest.mark.asyncio
    async def test_import_is_idempotent(self, storage, family, audit_logger):
        """Test importing the same batch twice skips everything the second time."""
        importer = TransactionImporter(storage, audit_logger)
        batch = [
            parsed("NETFLIX.COM", 1599, date(2024, 6, 15)),
            parsed("WHOLE FOODS", 8210, date(2024, 6, 16)),
        ]

        first = await importer.import_batch(family.id, ImportSource.CSV, batch)
        second = await importer.import_batch(family.id, ImportSource.CSV, batch)

        assert (first.imported, first.skipped, first.total) == (2, 0, 2)
        assert (second.imported, second.skipped, second.total) == (0, 2, 2)
        assert len(await storage.list_transactions(family.id)) == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, storage, family):
        result = await TransactionImporter(storage).import_batch(family.id, ImportSource.CSV, [])
        assert result.success is True
        assert (result.imported, result.skipped, result.total) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_dedup_is_case_insensitive_across_sources(self, storage, family):
        importer = TransactionImporter(storage)
        await importer.import_batch(
            family.id, ImportSource.CSV, [parsed("Starbucks", 525, date(2024, 6, 1))]
        )
        result = await importer.import_batch(
            family.id, ImportSource.GOOGLE_SHEET, [parsed("STARBUCKS", 525, date(2024, 6, 1))]
        )
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_identical_rows_in_one_batch_both_imported(self, storage, family):
        """Test two identical purchases in one batch are two transactions."""
        coffee = parsed("Starbucks", 525, date(2024, 6, 1))
        result = await TransactionImporter(storage).import_batch(
            family.id, ImportSource.CSV, [coffee, coffee]
        )
        assert result.imported == 2

    @pytest.mark.asyncio
    async def test_stored_fields(self, storage, family):
        result = await TransactionImporter(storage).import_batch(
            family.id, ImportSource.CSV, [parsed("PAYROLL", -250000, date(2024, 6, 17))]
        )
        tx = await storage.get_transaction(family.id, result.transaction_ids[0])
        assert tx.amount == -250000
        assert tx.name == "PAYROLL"
        assert tx.merchant_name == "PAYROLL"
        assert tx.external_id.startswith("csv-")
        assert tx.linked_event_id is None
        assert tx.is_hidden is False

    @pytest.mark.asyncio
    async def test_virtual_account_created_once(self, storage, family, audit_logger, audit_storage):
        importer = TransactionImporter(storage, audit_logger)
        await importer.import_batch(family.id, ImportSource.CSV, [parsed("A", 100, date(2024, 6, 1))])
        await importer.import_batch(family.id, ImportSource.CSV, [parsed("B", 100, date(2024, 6, 1))])

        transactions = await storage.list_transactions(family.id)
        assert len({tx.account_id for tx in transactions}) == 1

        events = await audit_storage.get_recent_events(limit=50)
        created = [e for e in events if e.event_type == AuditEventType.VIRTUAL_ACCOUNT_CREATED]
        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_email_account_named_after_card(self, storage, family):
        await TransactionImporter(storage).import_batch(
            family.id, ImportSource.EMAIL, [parsed("Shell", 4000, date(2024, 6, 1), card="4321")]
        )
        account, created = await storage.upsert_virtual_account(
            family.id, ImportSource.EMAIL, "ignored"
        )
        assert created is False
        assert account.name == "Card ****4321"
        assert account.mask == "4321"
        assert account.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_storage_failure_is_a_result(self, family, audit_logger, audit_storage):
        storage = FailingInsertStorage()
        await storage.save_family(family)

        result = await TransactionImporter(storage, audit_logger).import_batch(
            family.id, ImportSource.CSV, [parsed("A", 100, date(2024, 6, 1))]
        )

        assert result.success is False
        assert result.error_message == "Failed to save transactions"
        events = await audit_storage.get_recent_events(limit=10)
        assert any(e.event_type == AuditEventType.IMPORT_FAILED for e in events)

    @pytest.mark.asyncio
    async def test_row_errors_passed_through_and_audited(self, storage, family, audit_logger, audit_storage):
        result = await TransactionImporter(storage, audit_logger).import_batch(
            family.id,
            ImportSource.CSV,
            [parsed("A", 100, date(2024, 6, 1))],
            errors=["Row 3: Invalid amount"],
        )
        assert result.errors == ["Row 3: Invalid amount"]
        events = await audit_storage.get_recent_events(limit=10)
        assert any(e.event_type == AuditEventType.ROWS_SKIPPED for e in events)


class TestImportFlow:
    """Tests for the end-to-end import flows."""

    @pytest.mark.asyncio
    async def test_import_csv(self, storage, family):
        flow = ImportFlow(storage, sheet_service=FakeSheetService())
        result = await flow.import_csv(family.id, BANK_CSV)

        assert result.success is True
        assert result.imported == 3
        amounts = sorted(tx.amount for tx in await storage.list_transactions(family.id))
        assert amounts == [-250000, 1599, 8210]

    @pytest.mark.asyncio
    async def test_import_csv_twice(self, storage, family):
        flow = ImportFlow(storage, sheet_service=FakeSheetService())
        await flow.import_csv(family.id, BANK_CSV)
        result = await flow.import_csv(family.id, BANK_CSV)
        assert (result.imported, result.skipped, result.total) == (0, 3, 3)

    @pytest.mark.asyncio
    async def test_import_csv_unrecognized(self, storage, family):
        flow = ImportFlow(storage, sheet_service=FakeSheetService())
        result = await flow.import_csv(family.id, "Foo,Bar\n1,2\n")

        assert result.success is False
        assert result.error_message == "Failed to parse CSV"
        assert result.errors[0].startswith("CSV format not recognized")

    @pytest.mark.asyncio
    async def test_import_csv_no_valid_rows(self, storage, family):
        flow = ImportFlow(storage, sheet_service=FakeSheetService())
        text = "Posting Date,Description,Amount\n06/01/2024,A,abc\n"
        result = await flow.import_csv(family.id, text)

        assert result.success is False
        assert result.errors == ["Row 2: Invalid amount"]
        assert await storage.list_transactions(family.id) == []

    @pytest.mark.asyncio
    async def test_import_webhook(self, storage, family):
        flow = ImportFlow(storage, sheet_service=FakeSheetService())
        payload = {"amount": 45.67, "merchant": "Starbucks", "date": "2024-01-15"}

        first = await flow.import_webhook(family.id, payload)
        second = await flow.import_webhook(family.id, payload)

        assert first.imported == 1
        assert second.skipped == 1
        [tx] = await storage.list_transactions(family.id)
        assert tx.amount == 4567
        assert tx.external_id.startswith("email-")

    @pytest.mark.asyncio
    async def test_import_webhook_parse_error(self, storage, family):
        flow = ImportFlow(storage, sheet_service=FakeSheetService())
        result = await flow.import_webhook(family.id, {"merchant": "X", "amount": 0})
        assert result.success is False
        assert result.error_message == "Invalid amount"

    @pytest.mark.asyncio
    async def test_import_webhook_wrong_field_type(self, storage, family):
        flow = ImportFlow(storage, sheet_service=FakeSheetService())
        result = await flow.import_webhook(
            family.id, {"subject": "Your $5.00 transaction with SHOP", "from": 123}
        )
        assert result.success is False
        assert result.error_message == "Invalid request format: invalid from"
        assert await storage.list_transactions(family.id) == []

    @pytest.mark.asyncio
    async def test_sync_sheet_runs_auto_match(self, storage, family, add_event):
        event = await add_event("Netflix", date(2024, 6, 1), estimated_cost=1599)
        sheet = FakeSheetService("Date,Description,Amount\n2024-06-15,NETFLIX SUBSCRIPTION,15.99\n")
        flow = ImportFlow(storage, sheet_service=sheet)

        result = await flow.sync_sheet(family.id, sheet_id="abc")

        assert sheet.requested == ["abc"]
        assert result.imported == 1
        assert result.auto_matched == 1
        assert result.match_details[0].event_id == event.id
        stored = await storage.get_event(family.id, event.id)
        assert stored.status == EventStatus.COMPLETED
        assert stored.actual_cost == 1599

    @pytest.mark.asyncio
    async def test_sync_sheet_uses_configured_sheet(self, storage, family):
        sheet = FakeSheetService("")
        await ImportFlow(storage, sheet_service=sheet).sync_sheet(family.id)
        assert sheet.requested == ["1Bp1DlgifwNrU7trcrk-02O6pyAYgz-VP220xRCroDgs"]

    @pytest.mark.asyncio
    async def test_sync_sheet_from_share_link(self, storage, family):
        sheet = FakeSheetService("")
        flow = ImportFlow(storage, sheet_service=sheet)

        result = await flow.sync_sheet(
            family.id, sheet_url="https://docs.google.com/spreadsheets/d/abc-123_X/edit#gid=0"
        )

        assert result.success is True
        assert sheet.requested == ["abc-123_X"]

    @pytest.mark.asyncio
    async def test_sync_sheet_rejects_other_links(self, storage, family):
        sheet = FakeSheetService("")
        flow = ImportFlow(storage, sheet_service=sheet)

        result = await flow.sync_sheet(family.id, sheet_url="https://example.com/file.csv")

        assert result.success is False
        assert result.error_message == "Invalid Google Sheets URL"
        assert sheet.requested == []

    @pytest.mark.asyncio
    async def test_sync_empty_sheet(self, storage, family):
        flow = ImportFlow(storage, sheet_service=FakeSheetService("Date,Description,Amount\n"))
        result = await flow.sync_sheet(family.id, sheet_id="abc")
        assert result.success is True
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_sync_sheet_fetch_error(self, storage, family):
        error = SheetFetchError("Sheet not found. Make sure the URL is correct.", status_code=404)
        flow = ImportFlow(storage, sheet_service=FakeSheetService(error=error))
        result = await flow.sync_sheet(family.id, sheet_id="abc")
        assert result.success is False
        assert result.error_message.startswith("Sheet not found")
