"""
Result Models for Household Reconciler

Typed shapes that flow between components and out to callers:
- ParsedTransaction: the one shape every normalizer produces
- ImportResult / MatchResult / ActionResult: what mutating entry points return
- MoneyStatus / CategoryBudgetStatus / SavingsProjection: read-side summaries

DESIGN DECISION: Entry points never raise to their caller. Every failure
path becomes one of these results with success=False and a message.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from reconciler.models.ledger import (
    Event,
    ImportSource,
    MatchType,
    MerchantCategory,
)


# =============================================================================
# NORMALIZER OUTPUT
# =============================================================================

class ParsedTransaction(BaseModel):
    """
    A transaction as read from a source, before it is stored.

    amount_cents already follows the internal sign convention
    (positive = expense, negative = credit).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount_cents: int
    merchant: str = Field(..., min_length=1, max_length=300)
    date: date
    card_last4: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    is_credit: bool = False
    raw: Optional[str] = Field(
        default=None,
        description="Original text for debugging"
    )


class ParseBatch(BaseModel):
    """Rows a normalizer could read plus per-row problems it skipped."""

    transactions: list[ParsedTransaction] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.transactions) > 0


# =============================================================================
# MATCHING
# =============================================================================

class MatchDetail(BaseModel):
    """One association made by an auto-match run."""

    transaction_id: UUID
    event_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    transaction_name: str
    target_name: str = Field(
        ...,
        description="Event title, or category name for budget categories"
    )
    match_type: MatchType


class MatchResult(BaseModel):
    """Outcome of one auto-match run for a family."""

    success: bool = True
    error_message: Optional[str] = None
    matched: int = Field(default=0, ge=0)
    details: list[MatchDetail] = Field(default_factory=list)

    def record(self, detail: MatchDetail) -> None:
        self.details.append(detail)
        self.matched += 1


# =============================================================================
# INGESTION
# =============================================================================

class ImportResult(BaseModel):
    """
    Outcome of importing a batch from one source.

    Duplicates are counted in `skipped`, never reported as errors.
    Row-level parse problems are listed in `errors` alongside a
    successful result for the rows that did parse.
    """

    success: bool
    source: ImportSource
    imported: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    transaction_ids: list[UUID] = Field(default_factory=list)

    # Only set by flows that run auto-match after importing
    auto_matched: Optional[int] = None
    match_details: list[MatchDetail] = Field(default_factory=list)

    def to_response(self) -> dict:
        """JSON body for the HTTP layer."""
        if not self.success:
            body = {"success": False, "error": self.error_message}
            if self.errors:
                body["details"] = self.errors
            return body

        body = {
            "success": True,
            "imported": self.imported,
            "skipped": self.skipped,
            "total": self.total,
        }
        if self.errors:
            body["errors"] = self.errors
        if self.auto_matched is not None:
            body["autoMatched"] = self.auto_matched
            body["matchDetails"] = [
                d.model_dump(mode="json") for d in self.match_details
            ]
        return body


class ActionResult(BaseModel):
    """Outcome of a single user-driven mutation (link, unlink, rule edit...)."""

    success: bool
    error_message: Optional[str] = None
    entity_id: Optional[UUID] = None
    match_result: Optional[MatchResult] = None

    @classmethod
    def failed(cls, message: str) -> 'ActionResult':
        return cls(success=False, error_message=message)


# =============================================================================
# MONEY STATUS
# =============================================================================

class CategorySpending(BaseModel):
    """Spending against one budget-type category in a month."""

    category_id: UUID
    category_name: str
    spent: int
    budget_remaining: int = Field(ge=0)


class MoneyStatus(BaseModel):
    """
    The "available money" breakdown for one month.

    unallocated = max(0, budget + income_received + income_expected
                          - spent - spoken_for)
    """

    year: int
    month: int = Field(ge=1, le=12)
    computed_at: datetime = Field(default_factory=datetime.utcnow)

    budget: int = 0
    spent: int = 0
    spoken_for: int = 0
    unallocated: int = Field(default=0, ge=0)
    income_received: int = 0
    income_expected: int = 0

    spent_events: list[Event] = Field(default_factory=list)
    spoken_for_events: list[Event] = Field(default_factory=list)
    income_received_events: list[Event] = Field(default_factory=list)
    income_expected_events: list[Event] = Field(default_factory=list)
    category_spending: list[CategorySpending] = Field(default_factory=list)

    @property
    def total_available(self) -> int:
        return self.budget + self.income_received + self.income_expected


class CategoryBudgetStatus(BaseModel):
    """Per-category view; remaining may go negative when overspent."""

    category: MerchantCategory
    budget: int
    spent: int
    remaining: int
    transaction_count: int = Field(ge=0)


# =============================================================================
# SAVINGS
# =============================================================================

class SavingsStatus(str, Enum):
    AHEAD = "ahead"
    ON_TRACK = "on-track"
    BEHIND = "behind"
    COMPLETED = "completed"


class SavingsProjection(BaseModel):
    """Derived, never stored. Same goal snapshot + same day = same result."""

    status: SavingsStatus
    expected_amount: int
    difference: int
    months_remaining: int = Field(ge=0)
    monthly_contribution: int = Field(ge=0)
