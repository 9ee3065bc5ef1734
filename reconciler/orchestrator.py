"""
Main Orchestrator for Household Reconciler

This module ties together all the components and defines the
end-to-end flows for:
1. Import (source text → normalize → dedup → store [→ auto-match])
2. Match (auto-match runs, manual links, category/rule edits)
3. Budget (money status, category budgets, savings)

DESIGN DECISION: Flows are the error boundary. Parse, fetch and storage
failures of every mutating flow are turned into typed results here.
Only the read-only budget queries let StorageError through.
"""

import asyncio
from datetime import date
from typing import Any, Mapping, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from reconciler.audit import AuditLogger, create_correlation_id
from reconciler.budget import (
    MoneyStatusAggregator,
    SavingsService,
    calculate_savings_status,
)
from reconciler.config import get_settings
from reconciler.ingestion import TransactionImporter
from reconciler.matching import AutoMatchEngine, LinkService, RuleManager
from reconciler.models.ledger import CategoryType, ImportSource
from reconciler.models.results import (
    ActionResult,
    CategoryBudgetStatus,
    ImportResult,
    MatchResult,
    MoneyStatus,
    SavingsProjection,
)
from reconciler.normalizers import (
    ParseError,
    parse_bank_csv,
    parse_sheet_csv,
    parse_webhook,
)
from reconciler.services.sheet_export import (
    SheetExportService,
    SheetFetchError,
    extract_sheet_id,
)
from reconciler.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger()


class ImportFlow:
    """
    Orchestrates the three ingestion entry points.

    Flow:
    1. Normalize → source-specific parser produces ParsedTransaction rows
    2. Import → TransactionImporter skips duplicates and stores the rest
    3. Match → sheet sync only: run auto-match over unlinked transactions

    A batch fails wholesale only when not a single row could be parsed.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        importer: Optional[TransactionImporter] = None,
        engine: Optional[AutoMatchEngine] = None,
        sheet_service: Optional[SheetExportService] = None,
    ):
        self._audit_logger = audit_logger or AuditLogger()
        self._importer = importer or TransactionImporter(storage, self._audit_logger)
        self._engine = engine or AutoMatchEngine(storage, self._audit_logger)
        self._sheet_service = sheet_service or SheetExportService()

    async def import_csv(
        self,
        family_id: UUID,
        text: str,
        correlation_id: Optional[UUID] = None,
    ) -> ImportResult:
        """Import a bank CSV export."""
        correlation_id = correlation_id or create_correlation_id()

        try:
            batch = parse_bank_csv(text)
        except ParseError as e:
            return await self._parse_failed(
                family_id, ImportSource.CSV, [e.message, *e.details], correlation_id
            )

        if not batch.success:
            return await self._parse_failed(
                family_id, ImportSource.CSV, batch.errors, correlation_id
            )

        return await self._importer.import_batch(
            family_id,
            ImportSource.CSV,
            batch.transactions,
            errors=batch.errors,
            correlation_id=correlation_id,
        )

    async def import_webhook(
        self,
        family_id: UUID,
        data: Mapping[str, Any],
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ImportResult:
        """
        Import one transaction pushed by the webhook.

        The caller has already checked the shared secret.
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            parsed = parse_webhook(data, today=today)
        except ParseError as e:
            await self._audit_logger.log_import_failed(
                family_id, ImportSource.EMAIL.value, e.message, correlation_id
            )
            return ImportResult(
                success=False,
                source=ImportSource.EMAIL,
                error_message=e.message,
            )

        return await self._importer.import_batch(
            family_id,
            ImportSource.EMAIL,
            [parsed],
            correlation_id=correlation_id,
        )

    async def sync_sheet(
        self,
        family_id: UUID,
        sheet_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
        sheet_url: Optional[str] = None,
    ) -> ImportResult:
        """
        Pull the shared spreadsheet, import it, then auto-match.

        Args:
            family_id: Owning family
            sheet_id: Spreadsheet to read; defaults to the configured one
            sheet_url: Share link of the spreadsheet, used instead of sheet_id
        """
        correlation_id = correlation_id or create_correlation_id()
        if sheet_url:
            sheet_id = extract_sheet_id(sheet_url)
            if sheet_id is None:
                return ImportResult(
                    success=False,
                    source=ImportSource.GOOGLE_SHEET,
                    error_message="Invalid Google Sheets URL",
                )
        sheet_id = sheet_id or get_settings().imports.sheet_id

        try:
            # requests is blocking
            text = await asyncio.to_thread(self._sheet_service.fetch_csv, sheet_id)
        except SheetFetchError as e:
            await self._audit_logger.log_external_service_error(
                service="sheet_export",
                error_message=e.message,
                correlation_id=correlation_id,
            )
            return ImportResult(
                success=False,
                source=ImportSource.GOOGLE_SHEET,
                error_message=e.message,
            )

        try:
            batch = parse_sheet_csv(text)
        except ParseError as e:
            return ImportResult(
                success=False,
                source=ImportSource.GOOGLE_SHEET,
                error_message=e.message,
            )

        if not batch.transactions:
            logger.info("sheet_empty", family_id=str(family_id), sheet_id=sheet_id)
            return ImportResult(success=True, source=ImportSource.GOOGLE_SHEET)

        result = await self._importer.import_batch(
            family_id,
            ImportSource.GOOGLE_SHEET,
            batch.transactions,
            errors=batch.errors,
            correlation_id=correlation_id,
        )
        if not result.success:
            return result

        match_result = await self._engine.run(family_id, correlation_id=correlation_id)
        result.auto_matched = match_result.matched
        result.match_details = match_result.details
        return result

    async def reject_webhook(self, remote_addr: Optional[str]) -> None:
        """Record a webhook call refused for a missing or wrong secret."""
        await self._audit_logger.log_webhook_rejected(remote_addr)

    async def _parse_failed(
        self,
        family_id: UUID,
        source: ImportSource,
        errors: list[str],
        correlation_id: UUID,
    ) -> ImportResult:
        await self._audit_logger.log_import_failed(
            family_id, source.value, "No valid transactions found", correlation_id
        )
        return ImportResult(
            success=False,
            source=source,
            errors=errors,
            error_message="Failed to parse CSV",
        )


class MatchFlow:
    """
    Orchestrates matching: auto-match runs, manual link actions and the
    category/rule edits that re-trigger auto-match.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        tolerance_days: Optional[int] = None,
    ):
        audit_logger = audit_logger or AuditLogger()
        self.links = LinkService(storage, audit_logger)
        self._engine = AutoMatchEngine(
            storage, audit_logger, link_service=self.links, tolerance_days=tolerance_days
        )
        self.rules = RuleManager(storage, self._engine, audit_logger)

    @property
    def engine(self) -> AutoMatchEngine:
        return self._engine

    async def auto_match(
        self,
        family_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> MatchResult:
        return await self._engine.run(
            family_id, correlation_id=correlation_id or create_correlation_id()
        )

    async def link(self, family_id: UUID, transaction_id: UUID, event_id: UUID) -> ActionResult:
        return await self.links.link_transaction_to_event(family_id, transaction_id, event_id)

    async def unlink(self, family_id: UUID, transaction_id: UUID) -> ActionResult:
        return await self.links.unlink_transaction(family_id, transaction_id)

    async def reopen_event(self, family_id: UUID, event_id: UUID) -> ActionResult:
        return await self.links.reopen_event(family_id, event_id)

    async def categorize(
        self,
        family_id: UUID,
        transaction_id: UUID,
        category_id: Optional[UUID],
    ) -> ActionResult:
        return await self.links.set_transaction_category(family_id, transaction_id, category_id)

    async def create_category(
        self,
        family_id: UUID,
        name: str,
        keywords: list[str],
        category_type: CategoryType,
        monthly_budget: Optional[int] = None,
        event_id: Optional[UUID] = None,
    ) -> ActionResult:
        return await self.rules.create_category(
            family_id, name, keywords, category_type, monthly_budget, event_id
        )

    async def create_rule(self, family_id: UUID, keyword: str, event_id: UUID) -> ActionResult:
        return await self.rules.create_rule(family_id, keyword, event_id)


class BudgetFlow:
    """Read-side budget views plus savings contributions."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._aggregator = MoneyStatusAggregator(storage)
        self._savings = SavingsService(storage, audit_logger)

    async def money_status(self, family_id: UUID, year: int, month: int) -> MoneyStatus:
        """
        Raises:
            StorageError: If a read fails
            ValueError: If month is not 1-12
        """
        return await self._aggregator.compute(family_id, year, month)

    async def category_budgets(
        self,
        family_id: UUID,
        year: int,
        month: int,
    ) -> list[CategoryBudgetStatus]:
        return await self._aggregator.category_budget_status(family_id, year, month)

    async def savings_overview(
        self,
        family_id: UUID,
        today: Optional[date] = None,
    ) -> list[tuple[UUID, SavingsProjection]]:
        """(goal id, projection) for every goal of the family."""
        goals = await self._storage.list_goals(family_id)
        return [(goal.id, calculate_savings_status(goal, today)) for goal in goals]

    async def contribute(self, family_id: UUID, goal_id: UUID, amount: int) -> ActionResult:
        return await self._savings.contribute_to_goal(family_id, goal_id, amount)


def create_app_components(
    storage_backend: Optional[str] = None,
) -> tuple[ImportFlow, MatchFlow, BudgetFlow]:
    """
    Factory function to create all application components.

    Args:
        storage_backend: "memory" or "google_sheets"; defaults to the
                        configured backend. Falls back to memory if
                        Google Sheets is not configured.

    Returns:
        (import_flow, match_flow, budget_flow)
    """
    storage_backend = storage_backend or get_settings().app.storage_backend

    storage: LedgerStorageInterface
    if storage_backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except (ValidationError, StorageError) as e:
            logger.warning("storage_not_configured", backend=storage_backend, error=str(e))
            storage = InMemoryLedgerStorage()
            audit_logger = AuditLogger(InMemoryAuditStorage())
    else:
        storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    match_flow = MatchFlow(storage, audit_logger)
    import_flow = ImportFlow(
        storage,
        audit_logger=audit_logger,
        engine=match_flow.engine,
    )
    budget_flow = BudgetFlow(storage, audit_logger)

    return import_flow, match_flow, budget_flow
