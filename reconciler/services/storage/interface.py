"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a relational database later
2. Use in-memory storage for testing
3. Keep the reconciliation logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Equality filters on family id, date ranges, insert, update, delete.
Every method takes the family id and implementations must never return
another family's rows.

Two operations carry constraints that implementations must enforce
themselves rather than leave to callers:
- upsert_virtual_account is keyed on (family_id, source)
- link_transaction(exclusive=True) refuses an event already held by
  another transaction
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

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
from reconciler.models.audit import AuditEvent


class LedgerStorageInterface(ABC):
    """
    Abstract interface for everything the reconciliation engine persists.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Families
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_family(self, family_id: UUID) -> Optional[Family]:
        """Retrieve a family (for its monthly budget)."""
        pass

    @abstractmethod
    async def save_family(self, family: Family) -> Family:
        """Insert or replace a family record."""
        pass

    # -------------------------------------------------------------------------
    # Virtual accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def upsert_virtual_account(
        self,
        family_id: UUID,
        source: ImportSource,
        name: str,
        mask: Optional[str] = None,
    ) -> tuple[VirtualAccount, bool]:
        """
        Return the family's account for this source, creating it if missing.

        Returns:
            (account, created) - created is False when it already existed
        """
        pass

    @abstractmethod
    async def mark_account_synced(self, family_id: UUID, account_id: UUID) -> None:
        """Stamp last_synced_at on a virtual account."""
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_transactions(self, transactions: list[Transaction]) -> int:
        """
        Insert a batch of transactions.

        All-or-nothing: if any row fails, none are stored.

        Returns:
            Number of rows inserted

        Raises:
            StorageError: If the batch could not be written
            DuplicateError: If an external_id already exists
        """
        pass

    @abstractmethod
    async def get_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        family_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        linked: Optional[bool] = None,
        include_hidden: bool = True,
        category_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        List a family's transactions.

        Args:
            date_from: Only transactions on or after this date
            date_to: Only transactions on or before this date
            linked: True = only linked to an event, False = only unlinked
            include_hidden: Whether hidden transactions are returned
            category_id: Only transactions tagged with this category
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace a stored transaction's mutable fields.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def link_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
        event_id: UUID,
        exclusive: bool = True,
    ) -> Transaction:
        """
        Set a transaction's linked event.

        Args:
            exclusive: Refuse if another transaction already links this event

        Raises:
            NotFoundError: If the transaction doesn't exist
            DuplicateError: If exclusive and the event is already taken
        """
        pass

    @abstractmethod
    async def unlink_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
    ) -> Transaction:
        """Clear a transaction's linked event."""
        pass

    @abstractmethod
    async def linked_event_ids(self, family_id: UUID) -> set[UUID]:
        """Ids of every event that has at least one linked transaction."""
        pass

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_event(self, family_id: UUID, event_id: UUID) -> Optional[Event]:
        pass

    @abstractmethod
    async def list_events(
        self,
        family_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Event]:
        """List a family's events, oldest first."""
        pass

    @abstractmethod
    async def save_event(self, event: Event) -> Event:
        """Insert a new event."""
        pass

    @abstractmethod
    async def update_event(self, event: Event) -> Event:
        """
        Replace a stored event.

        Raises:
            NotFoundError: If the event doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Merchant categories and legacy rules
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_categories(
        self,
        family_id: UUID,
        category_type: Optional[CategoryType] = None,
    ) -> list[MerchantCategory]:
        """List categories, in creation order."""
        pass

    @abstractmethod
    async def get_category(
        self,
        family_id: UUID,
        category_id: UUID,
    ) -> Optional[MerchantCategory]:
        pass

    @abstractmethod
    async def save_category(self, category: MerchantCategory) -> MerchantCategory:
        """
        Insert a category.

        Raises:
            DuplicateError: If the family already has a category with this name
        """
        pass

    @abstractmethod
    async def update_category(self, category: MerchantCategory) -> MerchantCategory:
        pass

    @abstractmethod
    async def delete_category(self, family_id: UUID, category_id: UUID) -> bool:
        """Delete a category and clear its tag from transactions."""
        pass

    @abstractmethod
    async def list_rules(self, family_id: UUID) -> list[MerchantRule]:
        pass

    @abstractmethod
    async def save_rule(self, rule: MerchantRule) -> MerchantRule:
        """
        Insert a legacy keyword rule.

        Raises:
            DuplicateError: If the keyword already exists for the family
        """
        pass

    @abstractmethod
    async def delete_rule(self, family_id: UUID, rule_id: UUID) -> bool:
        pass

    # -------------------------------------------------------------------------
    # Savings goals
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_goal(self, family_id: UUID, goal_id: UUID) -> Optional[SavingsGoal]:
        pass

    @abstractmethod
    async def list_goals(self, family_id: UUID) -> list[SavingsGoal]:
        pass

    @abstractmethod
    async def save_goal(self, goal: SavingsGoal) -> SavingsGoal:
        pass

    @abstractmethod
    async def update_goal(self, goal: SavingsGoal) -> SavingsGoal:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
