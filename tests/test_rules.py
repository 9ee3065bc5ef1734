"""Tests for merchant category and legacy rule management."""

import pytest
from datetime import date
from uuid import uuid4

from reconciler.matching import AutoMatchEngine, RuleManager
from reconciler.models.audit import AuditEventType
from reconciler.models.ledger import CategoryType, EventStatus


@pytest.fixture
def rules(storage, audit_logger):
    engine = AutoMatchEngine(storage, audit_logger, tolerance_days=3)
    return RuleManager(storage, engine, audit_logger)


class TestCategories:
    """Tests for category create/update/delete."""

    @pytest.mark.asyncio
    async def test_create_runs_auto_match(self, rules, storage, family, add_transaction):
        """Test existing transactions pick up a new category right away."""
        tx = await add_transaction("SAFEWAY #123", 4000, date(2024, 6, 1))

        result = await rules.create_category(
            family.id, "Groceries", [" Safeway ", ""], CategoryType.BUDGET, monthly_budget=60000
        )

        assert result.success is True
        assert result.match_result.matched == 1
        category = await storage.get_category(family.id, result.entity_id)
        assert category.keywords == ["safeway"]
        assert (await storage.get_transaction(family.id, tx.id)).category_id == category.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, keywords, category_type, budget, message", [
        ("  ", ["a"], CategoryType.BUDGET, 100, "Name is required"),
        ("Food", [" ", ""], CategoryType.BUDGET, 100, "At least one keyword is required"),
        ("Food", ["a"], CategoryType.BUDGET, None, "Monthly budget is required for budget-type categories"),
        ("Bills", ["a"], CategoryType.EVENT, None, "Event is required for event-type categories"),
    ])
    async def test_validation_messages(self, rules, family, name, keywords, category_type, budget, message):
        result = await rules.create_category(family.id, name, keywords, category_type, monthly_budget=budget)
        assert result.success is False
        assert result.error_message == message

    @pytest.mark.asyncio
    async def test_event_category_needs_existing_event(self, rules, family):
        result = await rules.create_category(
            family.id, "Bills", ["pge"], CategoryType.EVENT, event_id=uuid4()
        )
        assert result.error_message == "Event not found"

    @pytest.mark.asyncio
    async def test_event_category_links_transactions(self, rules, storage, family, add_transaction, add_event):
        event = await add_event("Utilities", date(2024, 6, 20), estimated_cost=20000)
        tx = await add_transaction("PG&E", 12000, date(2024, 6, 5))

        result = await rules.create_category(
            family.id, "Utilities", ["pg&e"], CategoryType.EVENT, event_id=event.id
        )

        assert result.match_result.matched == 1
        assert (await storage.get_transaction(family.id, tx.id)).linked_event_id == event.id
        assert (await storage.get_event(family.id, event.id)).status == EventStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, rules, family):
        await rules.create_category(family.id, "Groceries", ["safeway"], CategoryType.BUDGET, 60000)
        result = await rules.create_category(family.id, "groceries", ["kroger"], CategoryType.BUDGET, 60000)
        assert result.error_message == "A category with this name already exists"

    @pytest.mark.asyncio
    async def test_update_category(self, rules, storage, family, add_transaction):
        created = await rules.create_category(family.id, "Groceries", ["safeway"], CategoryType.BUDGET, 60000)
        await add_transaction("KROGER", 3000, date(2024, 6, 2))

        result = await rules.update_category(
            family.id, created.entity_id, "Groceries", ["safeway", "kroger"], CategoryType.BUDGET, 80000
        )

        assert result.success is True
        assert result.match_result.matched == 1
        category = await storage.get_category(family.id, created.entity_id)
        assert category.monthly_budget == 80000
        assert category.updated_at >= category.created_at

    @pytest.mark.asyncio
    async def test_update_missing_category(self, rules, family):
        result = await rules.update_category(family.id, uuid4(), "X", ["x"], CategoryType.BUDGET, 100)
        assert result.error_message == "Category not found"

    @pytest.mark.asyncio
    async def test_delete_clears_tags(self, rules, storage, family, add_transaction, audit_storage):
        tx = await add_transaction("SAFEWAY", 4000, date(2024, 6, 1))
        created = await rules.create_category(family.id, "Groceries", ["safeway"], CategoryType.BUDGET, 60000)

        result = await rules.delete_category(family.id, created.entity_id)

        assert result.success is True
        assert (await storage.get_transaction(family.id, tx.id)).category_id is None
        types = {e.event_type for e in await audit_storage.get_recent_events()}
        assert AuditEventType.CATEGORY_DELETED in types


class TestLegacyRules:
    """Tests for keyword → event rules."""

    @pytest.mark.asyncio
    async def test_create_rule_normalizes_and_matches(self, rules, storage, family, add_transaction, add_event):
        event = await add_event("Rent", date(2024, 6, 1), estimated_cost=250000)
        tx = await add_transaction("ZELLE TO LANDLORD", 250000, date(2024, 6, 1))

        result = await rules.create_rule(family.id, "  Zelle ", event.id)

        assert result.success is True
        [rule] = await storage.list_rules(family.id)
        assert rule.keyword == "zelle"
        assert (await storage.get_transaction(family.id, tx.id)).linked_event_id == event.id

    @pytest.mark.asyncio
    async def test_duplicate_keyword_rejected(self, rules, family, add_event):
        event = await add_event("Rent", date(2024, 6, 1), estimated_cost=250000)
        await rules.create_rule(family.id, "zelle", event.id)
        result = await rules.create_rule(family.id, "ZELLE", event.id)
        assert result.error_message == "A rule with this keyword already exists"

    @pytest.mark.asyncio
    async def test_blank_keyword(self, rules, family):
        result = await rules.create_rule(family.id, "   ", uuid4())
        assert result.error_message == "Keyword is required"

    @pytest.mark.asyncio
    async def test_overlong_keyword_rejected(self, rules, storage, family, add_event):
        event = await add_event("Rent", date(2024, 6, 1), estimated_cost=250000)
        result = await rules.create_rule(family.id, "k" * 150, event.id)
        assert result.success is False
        assert result.error_message == "String should have at most 100 characters"
        assert await storage.list_rules(family.id) == []

    @pytest.mark.asyncio
    async def test_delete_rule(self, rules, storage, family, add_event):
        event = await add_event("Rent", date(2024, 6, 1), estimated_cost=250000)
        created = await rules.create_rule(family.id, "zelle", event.id)

        assert (await rules.delete_rule(family.id, created.entity_id)).success is True
        assert await storage.list_rules(family.id) == []
        assert (await rules.delete_rule(family.id, created.entity_id)).error_message == "Rule not found"
