"""
In-Memory Storage Implementation

The reference backend: used by the test suite and as the default in
development. It enforces the same constraints a relational backend
would enforce with unique indexes:
- one virtual account per (family, source)
- unique transaction external_id
- unique category name and rule keyword per family
- at most one exclusive link per event

Mutations that check-then-write hold a single asyncio.Lock so two
concurrent coroutines cannot both claim the same event.
"""

import asyncio
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from reconciler.models.audit import AuditEvent
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
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dict-backed ledger storage. Records are copied in and out."""

    def __init__(self):
        self._families: dict[UUID, Family] = {}
        self._accounts: dict[tuple[UUID, ImportSource], VirtualAccount] = {}
        self._transactions: dict[UUID, Transaction] = {}
        self._events: dict[UUID, Event] = {}
        self._categories: dict[UUID, MerchantCategory] = {}
        self._rules: dict[UUID, MerchantRule] = {}
        self._goals: dict[UUID, SavingsGoal] = {}
        self._lock = asyncio.Lock()

    # Families

    async def get_family(self, family_id: UUID) -> Optional[Family]:
        family = self._families.get(family_id)
        return family.model_copy() if family else None

    async def save_family(self, family: Family) -> Family:
        self._families[family.id] = family.model_copy()
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
            key = (family_id, source)
            existing = self._accounts.get(key)
            if existing:
                return existing.model_copy(), False
            account = VirtualAccount(
                family_id=family_id,
                source=source,
                name=name,
                mask=mask,
            )
            self._accounts[key] = account
            return account.model_copy(), True

    async def mark_account_synced(self, family_id: UUID, account_id: UUID) -> None:
        for key, account in self._accounts.items():
            if key[0] == family_id and account.id == account_id:
                self._accounts[key] = account.model_copy(
                    update={"last_synced_at": datetime.utcnow()}
                )
                return
        raise NotFoundError(f"Account not found: {account_id}")

    # Transactions

    async def insert_transactions(self, transactions: list[Transaction]) -> int:
        async with self._lock:
            existing_ids = {tx.external_id for tx in self._transactions.values()}
            batch_ids = set()
            for tx in transactions:
                if tx.external_id in existing_ids or tx.external_id in batch_ids:
                    raise DuplicateError(f"Duplicate external id: {tx.external_id}")
                batch_ids.add(tx.external_id)

            for tx in transactions:
                self._transactions[tx.id] = tx.model_copy()
            return len(transactions)

    async def get_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        tx = self._transactions.get(transaction_id)
        if tx is None or tx.family_id != family_id:
            return None
        return tx.model_copy()

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
        for tx in self._transactions.values():
            if tx.family_id != family_id:
                continue
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
            results.append(tx.model_copy())
        return results

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        stored = self._transactions.get(transaction.id)
        if stored is None or stored.family_id != transaction.family_id:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        self._transactions[transaction.id] = transaction.model_copy()
        return transaction

    async def link_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
        event_id: UUID,
        exclusive: bool = True,
    ) -> Transaction:
        async with self._lock:
            tx = self._transactions.get(transaction_id)
            if tx is None or tx.family_id != family_id:
                raise NotFoundError(f"Transaction not found: {transaction_id}")

            if exclusive:
                for other in self._transactions.values():
                    if other.id != transaction_id and other.linked_event_id == event_id:
                        raise DuplicateError(
                            f"Event {event_id} is already linked to transaction {other.id}"
                        )

            linked = tx.model_copy(update={"linked_event_id": event_id})
            self._transactions[transaction_id] = linked
            return linked.model_copy()

    async def unlink_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
    ) -> Transaction:
        tx = self._transactions.get(transaction_id)
        if tx is None or tx.family_id != family_id:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        unlinked = tx.model_copy(update={"linked_event_id": None})
        self._transactions[transaction_id] = unlinked
        return unlinked.model_copy()

    async def linked_event_ids(self, family_id: UUID) -> set[UUID]:
        return {
            tx.linked_event_id
            for tx in self._transactions.values()
            if tx.family_id == family_id and tx.linked_event_id is not None
        }

    # Events

    async def get_event(self, family_id: UUID, event_id: UUID) -> Optional[Event]:
        event = self._events.get(event_id)
        if event is None or event.family_id != family_id:
            return None
        return event.model_copy()

    async def list_events(
        self,
        family_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Event]:
        events = [
            e.model_copy()
            for e in self._events.values()
            if e.family_id == family_id
            and (date_from is None or e.event_date >= date_from)
            and (date_to is None or e.event_date <= date_to)
        ]
        events.sort(key=lambda e: e.event_date)
        return events

    async def save_event(self, event: Event) -> Event:
        if event.id in self._events:
            raise DuplicateError(f"Event already exists: {event.id}")
        self._events[event.id] = event.model_copy()
        return event

    async def update_event(self, event: Event) -> Event:
        stored = self._events.get(event.id)
        if stored is None or stored.family_id != event.family_id:
            raise NotFoundError(f"Event not found: {event.id}")
        self._events[event.id] = event.model_copy()
        return event

    # Categories

    async def list_categories(
        self,
        family_id: UUID,
        category_type: Optional[CategoryType] = None,
    ) -> list[MerchantCategory]:
        return [
            c.model_copy()
            for c in self._categories.values()
            if c.family_id == family_id
            and (category_type is None or c.category_type == category_type)
        ]

    async def get_category(
        self,
        family_id: UUID,
        category_id: UUID,
    ) -> Optional[MerchantCategory]:
        category = self._categories.get(category_id)
        if category is None or category.family_id != family_id:
            return None
        return category.model_copy()

    async def save_category(self, category: MerchantCategory) -> MerchantCategory:
        async with self._lock:
            self._check_category_name(category)
            self._categories[category.id] = category.model_copy()
            return category

    async def update_category(self, category: MerchantCategory) -> MerchantCategory:
        async with self._lock:
            stored = self._categories.get(category.id)
            if stored is None or stored.family_id != category.family_id:
                raise NotFoundError(f"Category not found: {category.id}")
            self._check_category_name(category)
            self._categories[category.id] = category.model_copy()
            return category

    def _check_category_name(self, category: MerchantCategory) -> None:
        for other in self._categories.values():
            if (
                other.id != category.id
                and other.family_id == category.family_id
                and other.name.lower() == category.name.lower()
            ):
                raise DuplicateError(f"Category name already exists: {category.name}")

    async def delete_category(self, family_id: UUID, category_id: UUID) -> bool:
        category = self._categories.get(category_id)
        if category is None or category.family_id != family_id:
            return False
        del self._categories[category_id]
        for tx_id, tx in self._transactions.items():
            if tx.category_id == category_id:
                self._transactions[tx_id] = tx.model_copy(update={"category_id": None})
        return True

    # Legacy rules

    async def list_rules(self, family_id: UUID) -> list[MerchantRule]:
        return [r.model_copy() for r in self._rules.values() if r.family_id == family_id]

    async def save_rule(self, rule: MerchantRule) -> MerchantRule:
        async with self._lock:
            for other in self._rules.values():
                if other.family_id == rule.family_id and other.keyword == rule.keyword:
                    raise DuplicateError(f"Rule keyword already exists: {rule.keyword}")
            self._rules[rule.id] = rule.model_copy()
            return rule

    async def delete_rule(self, family_id: UUID, rule_id: UUID) -> bool:
        rule = self._rules.get(rule_id)
        if rule is None or rule.family_id != family_id:
            return False
        del self._rules[rule_id]
        return True

    # Savings goals

    async def get_goal(self, family_id: UUID, goal_id: UUID) -> Optional[SavingsGoal]:
        goal = self._goals.get(goal_id)
        if goal is None or goal.family_id != family_id:
            return None
        return goal.model_copy()

    async def list_goals(self, family_id: UUID) -> list[SavingsGoal]:
        return [g.model_copy() for g in self._goals.values() if g.family_id == family_id]

    async def save_goal(self, goal: SavingsGoal) -> SavingsGoal:
        self._goals[goal.id] = goal.model_copy()
        return goal

    async def update_goal(self, goal: SavingsGoal) -> SavingsGoal:
        stored = self._goals.get(goal.id)
        if stored is None or stored.family_id != goal.family_id:
            raise NotFoundError(f"Savings goal not found: {goal.id}")
        self._goals[goal.id] = goal.model_copy()
        return goal


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit log."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
