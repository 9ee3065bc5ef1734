"""
Shared fixtures.

Everything runs against the in-memory backend; no test touches the
network or Google Sheets.
"""

from datetime import date

import pytest
import pytest_asyncio

from reconciler.audit import AuditLogger
from reconciler.models.ledger import (
    Event,
    EventStatus,
    EventType,
    Family,
    ImportSource,
    Transaction,
)
from reconciler.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest_asyncio.fixture
async def family(storage):
    family = Family(name="Test Family", monthly_budget=300000)
    await storage.save_family(family)
    return family


@pytest_asyncio.fixture
async def account(storage, family):
    account, _ = await storage.upsert_virtual_account(
        family.id, ImportSource.CSV, ImportSource.CSV.account_name
    )
    return account


@pytest.fixture
def add_transaction(storage, family, account):
    """Store a transaction directly, bypassing ingestion."""
    counter = {"n": 0}

    async def _add(name: str, amount: int, tx_date: date, **fields) -> Transaction:
        counter["n"] += 1
        tx = Transaction(
            family_id=family.id,
            account_id=account.id,
            external_id=f"test-{counter['n']}",
            amount=amount,
            name=name,
            merchant_name=name,
            date=tx_date,
            **fields,
        )
        await storage.insert_transactions([tx])
        return tx

    return _add


@pytest.fixture
def add_event(storage, family):
    async def _add(
        title: str,
        event_date: date,
        estimated_cost: int = 0,
        event_type: EventType = EventType.EXPENSE,
        status: EventStatus = EventStatus.UPCOMING,
        actual_cost=None,
    ) -> Event:
        event = Event(
            family_id=family.id,
            title=title,
            event_date=event_date,
            event_type=event_type,
            status=status,
            estimated_cost=estimated_cost,
            actual_cost=actual_cost,
        )
        await storage.save_event(event)
        return event

    return _add
