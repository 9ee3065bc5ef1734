"""
Core Ledger Models for Household Reconciler

These models define the strict schemas for the records the reconciliation
engine reads and writes. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep money as integer minor units (cents) everywhere

SIGN CONVENTION: a positive transaction amount is money going out
(an expense); a negative amount is money coming in (a credit or refund).
Every normalizer converts its source to this convention.

DESIGN DECISION: Every record carries its family id. The storage layer
filters on it; no record ever references another family's data.
"""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EventType(str, Enum):
    """
    Kind of scheduled occurrence.

    Calendar events carry no money and are excluded from every
    money-status computation.
    """
    EXPENSE = "expense"
    INCOME = "income"
    CALENDAR = "calendar"


class EventStatus(str, Enum):
    """Event lifecycle status."""
    UPCOMING = "upcoming"
    COMPLETED = "completed"    # actual_cost is known
    CANCELLED = "cancelled"


class CategoryType(str, Enum):
    """
    Merchant category flavour.

    BUDGET categories are variable-spending buckets with a monthly budget.
    EVENT categories point at one recurring event (bills that are grouped).
    """
    BUDGET = "budget"
    EVENT = "event"


class ImportSource(str, Enum):
    """
    Non-bank sources transactions can be imported from.

    The value doubles as the source tag that keys the virtual account
    and prefixes the synthetic external ids.
    """
    CSV = "csv-import"
    EMAIL = "email-import"
    GOOGLE_SHEET = "google-sheet-import"

    @property
    def account_name(self) -> str:
        return {
            ImportSource.CSV: "CSV Import",
            ImportSource.EMAIL: "Email Import",
            ImportSource.GOOGLE_SHEET: "Google Sheet Import",
        }[self]

    @property
    def id_prefix(self) -> str:
        return {
            ImportSource.CSV: "csv",
            ImportSource.EMAIL: "email",
            ImportSource.GOOGLE_SHEET: "sheet",
        }[self]


class MatchType(str, Enum):
    """How the auto-match engine (or a user) associated a transaction."""
    EVENT_TITLE = "event_title"
    CATEGORY = "category"
    KEYWORD_RULE = "keyword_rule"


# =============================================================================
# FAMILY & ACCOUNTS
# =============================================================================

class Family(BaseModel):
    """The tenant. Only the monthly base budget matters to the engine."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(default="My Family", max_length=200)
    monthly_budget: int = Field(
        default=0,
        ge=0,
        description="Base monthly budget in cents"
    )


class VirtualAccount(BaseModel):
    """
    Synthetic bank account holding transactions from one import source.

    There is at most one per (family, source) pair.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    source: ImportSource
    name: str = Field(..., min_length=1, max_length=200)
    mask: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}$",
        description="Card last four digits, when the source reports them"
    )
    is_tracked: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_synced_at: Optional[datetime] = None


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    An immutable fact of money movement.

    Only category_id, linked_event_id, is_hidden and skip_auto_match ever
    change after ingestion, and only through the auto-match engine or an
    explicit user action.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    account_id: UUID
    external_id: str = Field(
        ...,
        min_length=1,
        description="Source-specific unique id (synthetic for imports)"
    )
    amount: int = Field(
        ...,
        description="Cents; positive = outflow, negative = inflow"
    )
    name: str = Field(..., min_length=1, max_length=300)
    merchant_name: Optional[str] = Field(default=None, max_length=300)
    date: date
    pending: bool = False
    is_hidden: bool = False
    category_id: Optional[UUID] = None
    linked_event_id: Optional[UUID] = None
    skip_auto_match: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def display_name(self) -> str:
        """Merchant name when known, raw name otherwise."""
        return self.merchant_name or self.name

    @property
    def is_linked(self) -> bool:
        return self.linked_event_id is not None


# =============================================================================
# EVENTS
# =============================================================================

class Event(BaseModel):
    """
    A scheduled financial or calendar occurrence.

    INVARIANT: actual_cost is only set when status is COMPLETED.
    Use completed_with() / reopened() rather than editing the fields
    directly so the invariant holds.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    event_date: date
    event_time: Optional[time] = None
    event_type: EventType = EventType.EXPENSE
    status: EventStatus = EventStatus.UPCOMING
    estimated_cost: int = Field(
        default=0,
        ge=0,
        description="Expected amount in cents"
    )
    actual_cost: Optional[int] = Field(
        default=None,
        description="Amount actually paid/received in cents (sign preserved)"
    )
    recurrence: Optional[str] = Field(
        default=None,
        pattern="^(weekly|biweekly|monthly|quarterly|yearly)$"
    )
    recurrence_parent_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_actual_cost(self) -> 'Event':
        """actual_cost belongs to completed events only."""
        if self.actual_cost is not None and self.status != EventStatus.COMPLETED:
            raise ValueError("Actual cost can only be set on a completed event")
        return self

    def completed_with(self, actual_cost: int) -> 'Event':
        """Copy of this event marked completed at the given cost."""
        return Event.model_validate({
            **self.model_dump(),
            "status": EventStatus.COMPLETED,
            "actual_cost": actual_cost,
            "updated_at": datetime.utcnow(),
        })

    def reopened(self) -> 'Event':
        """Copy of this event back to upcoming with no actual cost."""
        return Event.model_validate({
            **self.model_dump(),
            "status": EventStatus.UPCOMING,
            "actual_cost": None,
            "updated_at": datetime.utcnow(),
        })

    @property
    def counts_toward_money(self) -> bool:
        return self.event_type in (EventType.EXPENSE, EventType.INCOME)


# =============================================================================
# MATCHING RULES
# =============================================================================

def normalize_keywords(keywords: list[str]) -> list[str]:
    """Lowercase, trim and drop empty keywords, keeping order."""
    return [k.strip().lower() for k in keywords if k and k.strip()]


class MerchantCategory(BaseModel):
    """
    A named keyword rule.

    Budget-type categories carry a monthly budget; event-type categories
    carry the id of the event their transactions are linked to.
    Exactly one of the two is set.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    keywords: list[str] = Field(
        ...,
        description="Lowercase substrings matched against merchant text"
    )
    category_type: CategoryType
    monthly_budget: Optional[int] = Field(default=None, gt=0)
    event_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('keywords')
    @classmethod
    def clean_keywords(cls, v: list[str]) -> list[str]:
        cleaned = normalize_keywords(v)
        if not cleaned:
            raise ValueError("At least one keyword is required")
        return cleaned

    @model_validator(mode='after')
    def validate_type_fields(self) -> 'MerchantCategory':
        """The category type decides which target field is populated."""
        if self.category_type == CategoryType.BUDGET:
            if self.monthly_budget is None:
                raise ValueError("Monthly budget is required for budget-type categories")
            if self.event_id is not None:
                raise ValueError("Budget-type categories cannot link to an event")
        else:
            if self.event_id is None:
                raise ValueError("Event is required for event-type categories")
            if self.monthly_budget is not None:
                raise ValueError("Event-type categories cannot have a monthly budget")
        return self

    def matches(self, merchant_text: str) -> bool:
        """True if any keyword is a substring of the (lowercased) merchant text."""
        text = merchant_text.lower()
        return any(keyword in text for keyword in self.keywords)


class MerchantRule(BaseModel):
    """Legacy single keyword → event rule. Keywords are unique per family."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    keyword: str = Field(..., min_length=1, max_length=100)
    event_id: UUID
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('keyword')
    @classmethod
    def lowercase_keyword(cls, v: str) -> str:
        return v.lower()

    def matches(self, merchant_text: str) -> bool:
        return self.keyword in merchant_text.lower()


# =============================================================================
# SAVINGS
# =============================================================================

class SavingsGoal(BaseModel):
    """A savings target; current_amount only grows through contributions."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: int = Field(..., gt=0, description="Target in cents")
    target_date: date
    current_amount: int = Field(default=0, ge=0)
    is_completed: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def derive_completed(self) -> 'SavingsGoal':
        self.is_completed = self.current_amount >= self.target_amount
        return self
