"""
Tests for Household Reconciler models

Test strategy:
1. Unit tests for individual components (models, normalizers, matching)
2. Flow tests against the in-memory storage backend
3. No real API calls in tests
"""

import pytest
from datetime import date
from uuid import uuid4

from reconciler.models.ledger import (
    CategoryType,
    Event,
    EventStatus,
    EventType,
    ImportSource,
    MerchantCategory,
    MerchantRule,
    SavingsGoal,
    Transaction,
)
from reconciler.models.results import ImportResult, MatchDetail, MatchResult, MoneyStatus
from reconciler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestLedgerModels:
    """Tests for ledger Pydantic models."""

    def test_transaction_display_name_prefers_merchant(self):
        """Test display_name falls back to the raw name."""
        tx = Transaction(
            family_id=uuid4(),
            account_id=uuid4(),
            external_id="csv-1",
            amount=1599,
            name="POS DEBIT NETFLIX.COM",
            merchant_name="Netflix",
            date=date(2024, 6, 15),
        )
        assert tx.display_name == "Netflix"
        assert tx.model_copy(update={"merchant_name": None}).display_name == "POS DEBIT NETFLIX.COM"

    def test_event_rejects_actual_cost_when_upcoming(self):
        """Test actual_cost belongs to completed events only."""
        with pytest.raises(ValueError, match="Actual cost can only be set"):
            Event(
                family_id=uuid4(),
                title="Rent",
                event_date=date(2024, 6, 1),
                actual_cost=100000,
            )

    def test_event_completed_with_and_reopened(self):
        """Test the completed/upcoming transitions keep the invariant."""
        event = Event(
            family_id=uuid4(),
            title="Rent",
            event_date=date(2024, 6, 1),
            estimated_cost=100000,
        )
        completed = event.completed_with(99500)
        assert completed.status == EventStatus.COMPLETED
        assert completed.actual_cost == 99500

        reopened = completed.reopened()
        assert reopened.status == EventStatus.UPCOMING
        assert reopened.actual_cost is None
        assert reopened.estimated_cost == 100000

    def test_calendar_events_do_not_count_toward_money(self):
        event = Event(
            family_id=uuid4(),
            title="Dentist",
            event_date=date(2024, 6, 1),
            event_type=EventType.CALENDAR,
        )
        assert event.counts_toward_money is False

    def test_category_keywords_normalized(self):
        """Test keywords are trimmed, lowercased and blanks dropped."""
        category = MerchantCategory(
            family_id=uuid4(),
            name="Groceries",
            keywords=["  WHOLE FOODS ", "", "Trader Joe"],
            category_type=CategoryType.BUDGET,
            monthly_budget=60000,
        )
        assert category.keywords == ["whole foods", "trader joe"]
        assert category.matches("WHOLE FOODS MARKET #123")
        assert not category.matches("SAFEWAY")

    def test_budget_category_requires_budget(self):
        with pytest.raises(ValueError, match="Monthly budget is required"):
            MerchantCategory(
                family_id=uuid4(),
                name="Groceries",
                keywords=["safeway"],
                category_type=CategoryType.BUDGET,
            )

    def test_event_category_requires_event(self):
        with pytest.raises(ValueError, match="Event is required"):
            MerchantCategory(
                family_id=uuid4(),
                name="Utilities",
                keywords=["pg&e"],
                category_type=CategoryType.EVENT,
            )

    def test_rule_keyword_lowercased(self):
        rule = MerchantRule(family_id=uuid4(), keyword="Spotify", event_id=uuid4())
        assert rule.keyword == "spotify"
        assert rule.matches("SPOTIFY USA")

    def test_savings_goal_completed_is_derived(self):
        """Test is_completed follows current >= target."""
        goal = SavingsGoal(
            family_id=uuid4(),
            name="Vacation",
            target_amount=100000,
            target_date=date(2025, 6, 1),
            current_amount=100000,
            is_completed=False,
        )
        assert goal.is_completed is True

    def test_import_source_tags(self):
        assert ImportSource.GOOGLE_SHEET.value == "google-sheet-import"
        assert ImportSource.CSV.account_name == "CSV Import"
        assert ImportSource.EMAIL.id_prefix == "email"


class TestResultModels:
    """Tests for result shapes returned to callers."""

    def test_import_result_failure_response(self):
        result = ImportResult(
            success=False,
            source=ImportSource.CSV,
            errors=["Row 2: Invalid amount"],
            error_message="Failed to parse CSV",
        )
        assert result.to_response() == {
            "success": False,
            "error": "Failed to parse CSV",
            "details": ["Row 2: Invalid amount"],
        }

    def test_import_result_success_response_omits_empty_errors(self):
        result = ImportResult(success=True, source=ImportSource.CSV, imported=2, total=2)
        body = result.to_response()
        assert body == {"success": True, "imported": 2, "skipped": 0, "total": 2}

    def test_import_result_includes_auto_match(self):
        result = ImportResult(
            success=True,
            source=ImportSource.GOOGLE_SHEET,
            imported=1,
            total=1,
            auto_matched=0,
        )
        body = result.to_response()
        assert body["autoMatched"] == 0
        assert body["matchDetails"] == []

    def test_match_result_record_counts(self):
        result = MatchResult()
        result.record(MatchDetail(
            transaction_id=uuid4(),
            transaction_name="NETFLIX",
            target_name="Netflix",
            match_type="event_title",
        ))
        assert result.matched == 1
        assert len(result.details) == 1

    def test_money_status_total_available(self):
        status = MoneyStatus(year=2024, month=6, budget=300000, income_received=5000, income_expected=1000)
        assert status.total_available == 306000


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            description="Imported",
        )
        assert event.event_type == AuditEventType.IMPORT_COMPLETED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_LINKED,
            description="Linked",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "transaction_linked"
        assert row[11] == "True"

    def test_builder_import_completed(self):
        family_id = uuid4()
        correlation_id = uuid4()

        event = AuditEventBuilder.import_completed(
            family_id=family_id,
            source="csv-import",
            imported=3,
            skipped=1,
            correlation_id=correlation_id,
        )

        assert event.family_id == family_id
        assert event.correlation_id == correlation_id
        assert event.details == {"source": "csv-import", "imported": 3, "skipped": 1}

    def test_builder_rule_changed_entity_type(self):
        event = AuditEventBuilder.rule_changed(
            AuditEventType.RULE_CREATED, uuid4(), uuid4(), "spotify"
        )
        assert event.entity_type == "rule"
        assert event.description == "Rule 'spotify' created"

        event = AuditEventBuilder.rule_changed(
            AuditEventType.CATEGORY_DELETED, uuid4(), uuid4(), "Groceries"
        )
        assert event.entity_type == "category"
        assert event.description == "Category 'Groceries' deleted"
