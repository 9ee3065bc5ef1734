"""
Audit Logger

DESIGN DECISION: Every import, link and rule change is logged.
This provides:
1. Complete traceability of why an event was marked completed
2. Debugging capability when auto-match picks the wrong event
3. A record of rejected webhook calls

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from reconciler.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from reconciler.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_import_completed(
        self,
        family_id: UUID,
        source: str,
        imported: int,
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.import_completed(
            family_id=family_id,
            source=source,
            imported=imported,
            skipped=skipped,
            correlation_id=correlation_id,
        ))

    async def log_import_failed(
        self,
        family_id: Optional[UUID],
        source: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.import_failed(
            family_id=family_id,
            source=source,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_rows_skipped(
        self,
        family_id: UUID,
        source: str,
        errors: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log unparseable rows. Does nothing for an empty list."""
        if not errors:
            return
        await self.log(AuditEventBuilder.rows_skipped(
            family_id=family_id,
            source=source,
            errors=errors,
            correlation_id=correlation_id,
        ))

    async def log_webhook_rejected(self, remote_addr: Optional[str]) -> None:
        await self.log(AuditEventBuilder.webhook_rejected(remote_addr))

    async def log_virtual_account_created(
        self,
        family_id: UUID,
        account_id: UUID,
        source: str,
    ) -> None:
        await self.log(AuditEventBuilder.virtual_account_created(
            family_id=family_id,
            account_id=account_id,
            source=source,
        ))

    async def log_auto_match_completed(
        self,
        family_id: UUID,
        matched: int,
        by_type: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.auto_match_completed(
            family_id=family_id,
            matched=matched,
            by_type=by_type,
            correlation_id=correlation_id,
        ))

    async def log_transaction_linked(
        self,
        family_id: UUID,
        transaction_id: UUID,
        event_id: UUID,
        match_type: str,
        amount: int,
        is_user_action: bool = False,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_linked(
            family_id=family_id,
            transaction_id=transaction_id,
            event_id=event_id,
            match_type=match_type,
            amount=amount,
            is_user_action=is_user_action,
        ))

    async def log_transaction_unlinked(
        self,
        family_id: UUID,
        transaction_id: UUID,
        event_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_unlinked(
            family_id=family_id,
            transaction_id=transaction_id,
            event_id=event_id,
        ))

    async def log_transaction_categorized(
        self,
        family_id: UUID,
        transaction_id: UUID,
        category_id: Optional[UUID],
        is_user_action: bool = True,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_categorized(
            family_id=family_id,
            transaction_id=transaction_id,
            category_id=category_id,
            is_user_action=is_user_action,
        ))

    async def log_event_reopened(
        self,
        family_id: UUID,
        event_id: UUID,
        unlinked_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.event_reopened(
            family_id=family_id,
            event_id=event_id,
            unlinked_count=unlinked_count,
        ))

    async def log_rule_changed(
        self,
        event_type,
        family_id: UUID,
        entity_id: UUID,
        name: str,
    ) -> None:
        """Log a category or legacy rule create/update/delete."""
        await self.log(AuditEventBuilder.rule_changed(
            event_type=event_type,
            family_id=family_id,
            entity_id=entity_id,
            name=name,
        ))

    async def log_savings_contribution(
        self,
        family_id: UUID,
        goal_id: UUID,
        amount: int,
        new_total: int,
        completed: bool,
    ) -> None:
        await self.log(AuditEventBuilder.savings_contribution(
            family_id=family_id,
            goal_id=goal_id,
            amount=amount,
            new_total=new_total,
            completed=completed,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new action (e.g., one sheet sync).
    Pass it through all subsequent operations.
    """
    return uuid4()
