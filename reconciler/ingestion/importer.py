"""
Transaction Importer

Takes normalized transactions from any source and stores the ones the
family doesn't already have.

DEDUPLICATION: a transaction's fingerprint is "amount|lowercased name|date".
Incoming rows whose fingerprint matches any stored transaction of the
family (from any source, not just this one) are skipped and counted.
Rows inside one batch are not deduplicated against each other: two
identical coffees on the same day are two real purchases.

Every source gets its own virtual account, created on first use.
"""

import time
from typing import Optional
from uuid import UUID, uuid4

import structlog

from reconciler.audit import AuditLogger
from reconciler.models.ledger import ImportSource, Transaction
from reconciler.models.results import ImportResult, ParsedTransaction
from reconciler.services.storage import LedgerStorageInterface, StorageError


logger = structlog.get_logger()


def fingerprint(amount: int, name: str, tx_date) -> str:
    """Duplicate-detection key shared by stored and incoming transactions."""
    return f"{amount}|{name.lower()}|{tx_date.isoformat()}"


def make_external_id(source: ImportSource) -> str:
    """Synthetic source id: tag, epoch milliseconds, random suffix."""
    return f"{source.id_prefix}-{int(time.time() * 1000)}-{uuid4().hex[:8]}"


class TransactionImporter:
    """
    Inserts a batch of ParsedTransaction for one family and one source.

    Never raises: storage problems come back as ImportResult(success=False).
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    def _account_name(self, source: ImportSource, parsed: list[ParsedTransaction]) -> tuple[str, Optional[str]]:
        if source == ImportSource.EMAIL:
            card = next((tx.card_last4 for tx in parsed if tx.card_last4), None)
            if card:
                return f"Card ****{card}", card
        return source.account_name, None

    async def import_batch(
        self,
        family_id: UUID,
        source: ImportSource,
        parsed: list[ParsedTransaction],
        errors: Optional[list[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ImportResult:
        """
        Store the new transactions from a parsed batch.

        Args:
            family_id: Owning family
            source: Which import path the batch came from
            parsed: Normalized transactions
            errors: Row-level parse errors to pass through to the result
            correlation_id: Ties the audit events of one import together

        Returns:
            ImportResult with imported/skipped/total counts
        """
        errors = errors or []
        total = len(parsed)
        log = logger.bind(family_id=str(family_id), source=source.value)

        await self._audit.log_rows_skipped(family_id, source.value, errors, correlation_id)

        try:
            account_name, mask = self._account_name(source, parsed)
            account, created = await self._storage.upsert_virtual_account(
                family_id, source, account_name, mask
            )
            if created:
                await self._audit.log_virtual_account_created(
                    family_id, account.id, source.value
                )
        except StorageError as e:
            log.error("virtual_account_setup_failed", error=str(e))
            await self._audit.log_import_failed(
                family_id, source.value, str(e), correlation_id
            )
            return ImportResult(
                success=False,
                source=source,
                total=total,
                errors=errors,
                error_message="Failed to set up import",
            )

        try:
            existing = await self._storage.list_transactions(family_id)
            seen = {fingerprint(tx.amount, tx.name, tx.date) for tx in existing}

            new_transactions = [
                Transaction(
                    family_id=family_id,
                    account_id=account.id,
                    external_id=make_external_id(source),
                    amount=p.amount_cents,
                    name=p.merchant,
                    merchant_name=p.merchant,
                    date=p.date,
                )
                for p in parsed
                if fingerprint(p.amount_cents, p.merchant, p.date) not in seen
            ]

            if new_transactions:
                await self._storage.insert_transactions(new_transactions)
            await self._storage.mark_account_synced(family_id, account.id)
        except StorageError as e:
            log.error("transaction_insert_failed", error=str(e))
            await self._audit.log_import_failed(
                family_id, source.value, str(e), correlation_id
            )
            return ImportResult(
                success=False,
                source=source,
                total=total,
                errors=errors,
                error_message="Failed to save transactions",
            )

        imported = len(new_transactions)
        skipped = total - imported
        log.info("import_completed", imported=imported, skipped=skipped)
        await self._audit.log_import_completed(
            family_id, source.value, imported, skipped, correlation_id
        )

        return ImportResult(
            success=True,
            source=source,
            imported=imported,
            skipped=skipped,
            total=total,
            errors=errors,
            transaction_ids=[tx.id for tx in new_transactions],
        )
