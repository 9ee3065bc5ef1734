"""
Audit Models for Household Reconciler

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of imports and automatic links
2. Debugging information when a transaction lands on the wrong event
3. Ability to reconstruct why an event became "completed"

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every stage of the reconciliation pipeline has its own event type.
    """
    # Ingestion
    IMPORT_STARTED = "import_started"
    IMPORT_COMPLETED = "import_completed"
    IMPORT_FAILED = "import_failed"
    ROWS_SKIPPED = "rows_skipped"
    WEBHOOK_REJECTED = "webhook_rejected"
    VIRTUAL_ACCOUNT_CREATED = "virtual_account_created"

    # Matching
    AUTO_MATCH_COMPLETED = "auto_match_completed"
    TRANSACTION_LINKED = "transaction_linked"
    TRANSACTION_UNLINKED = "transaction_unlinked"
    TRANSACTION_CATEGORIZED = "transaction_categorized"
    EVENT_REOPENED = "event_reopened"

    # Rule management
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    RULE_CREATED = "rule_created"
    RULE_DELETED = "rule_deleted"

    # Savings
    SAVINGS_CONTRIBUTION = "savings_contribution"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Tenant and entity this is about
    family_id: Optional[UUID] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'event', 'category')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one sheet sync)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "family_id": str(self.family_id) if self.family_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, family_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            str(self.family_id) if self.family_id else "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.import_completed(family_id, "csv-import", 3, 1, cid)
        event = AuditEventBuilder.transaction_linked(family_id, tx_id, event_id, "category")
    """

    @staticmethod
    def import_completed(
        family_id: UUID,
        source: str,
        imported: int,
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            family_id=family_id,
            entity_type="import",
            correlation_id=correlation_id,
            description=f"Imported {imported} transactions from {source} ({skipped} duplicates skipped)",
            details={
                "source": source,
                "imported": imported,
                "skipped": skipped,
            },
        )

    @staticmethod
    def import_failed(
        family_id: Optional[UUID],
        source: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_FAILED,
            severity=AuditSeverity.ERROR,
            family_id=family_id,
            entity_type="import",
            correlation_id=correlation_id,
            description=f"Import from {source} failed",
            error_message=error_message,
            details={"source": source},
        )

    @staticmethod
    def rows_skipped(
        family_id: UUID,
        source: str,
        errors: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROWS_SKIPPED,
            severity=AuditSeverity.WARNING,
            family_id=family_id,
            entity_type="import",
            correlation_id=correlation_id,
            description=f"{len(errors)} rows from {source} could not be parsed",
            details={"source": source, "errors": errors[:50]},
        )

    @staticmethod
    def webhook_rejected(remote_addr: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WEBHOOK_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="webhook",
            description="Webhook request rejected: missing or invalid key",
            details={"remote_addr": remote_addr or "unknown"},
        )

    @staticmethod
    def virtual_account_created(
        family_id: UUID,
        account_id: UUID,
        source: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VIRTUAL_ACCOUNT_CREATED,
            family_id=family_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Virtual account created for {source}",
            details={"source": source},
        )

    @staticmethod
    def auto_match_completed(
        family_id: UUID,
        matched: int,
        by_type: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTO_MATCH_COMPLETED,
            family_id=family_id,
            entity_type="auto_match",
            correlation_id=correlation_id,
            description=f"Auto-match linked or tagged {matched} transactions",
            details={"matched": matched, "by_type": by_type},
        )

    @staticmethod
    def transaction_linked(
        family_id: UUID,
        transaction_id: UUID,
        event_id: UUID,
        match_type: str,
        amount: int,
        is_user_action: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_LINKED,
            family_id=family_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction linked to event ({match_type})",
            details={
                "event_id": str(event_id),
                "match_type": match_type,
                "amount": amount,
            },
            is_user_action=is_user_action,
        )

    @staticmethod
    def transaction_unlinked(
        family_id: UUID,
        transaction_id: UUID,
        event_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UNLINKED,
            family_id=family_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description="Transaction unlinked; event reopened",
            details={"event_id": str(event_id)},
            is_user_action=True,
        )

    @staticmethod
    def transaction_categorized(
        family_id: UUID,
        transaction_id: UUID,
        category_id: Optional[UUID],
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CATEGORIZED,
            family_id=family_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=(
                "Transaction category set" if category_id else "Transaction category cleared"
            ),
            details={"category_id": str(category_id) if category_id else None},
            is_user_action=is_user_action,
        )

    @staticmethod
    def event_reopened(
        family_id: UUID,
        event_id: UUID,
        unlinked_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENT_REOPENED,
            family_id=family_id,
            entity_type="event",
            entity_id=event_id,
            description=f"Event reopened ({unlinked_count} transactions unlinked)",
            details={"unlinked_transactions": unlinked_count},
            is_user_action=True,
        )

    @staticmethod
    def rule_changed(
        event_type: AuditEventType,
        family_id: UUID,
        entity_id: UUID,
        name: str,
    ) -> AuditEvent:
        entity_type = "rule" if event_type in (
            AuditEventType.RULE_CREATED, AuditEventType.RULE_DELETED
        ) else "category"
        return AuditEvent(
            event_type=event_type,
            family_id=family_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} '{name}' {event_type.value.split('_')[-1]}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def savings_contribution(
        family_id: UUID,
        goal_id: UUID,
        amount: int,
        new_total: int,
        completed: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVINGS_CONTRIBUTION,
            family_id=family_id,
            entity_type="savings_goal",
            entity_id=goal_id,
            description=f"Contributed {amount} cents to savings goal",
            details={
                "amount": amount,
                "new_total": new_total,
                "completed": completed,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
