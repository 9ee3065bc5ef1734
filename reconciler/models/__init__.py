"""
Data Models Package

This package contains all Pydantic models used in the Household Reconciler.
All data flowing through the system must conform to these schemas.
"""

from reconciler.models.ledger import (
    CategoryType,
    Event,
    EventStatus,
    EventType,
    Family,
    ImportSource,
    MatchType,
    MerchantCategory,
    MerchantRule,
    SavingsGoal,
    Transaction,
    VirtualAccount,
    normalize_keywords,
)
from reconciler.models.results import (
    ActionResult,
    CategoryBudgetStatus,
    CategorySpending,
    ImportResult,
    MatchDetail,
    MatchResult,
    MoneyStatus,
    ParseBatch,
    ParsedTransaction,
    SavingsProjection,
    SavingsStatus,
)
from reconciler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CategoryType",
    "Event",
    "EventStatus",
    "EventType",
    "Family",
    "ImportSource",
    "MatchType",
    "MerchantCategory",
    "MerchantRule",
    "SavingsGoal",
    "Transaction",
    "VirtualAccount",
    "normalize_keywords",
    # Results
    "ActionResult",
    "CategoryBudgetStatus",
    "CategorySpending",
    "ImportResult",
    "MatchDetail",
    "MatchResult",
    "MoneyStatus",
    "ParseBatch",
    "ParsedTransaction",
    "SavingsProjection",
    "SavingsStatus",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
