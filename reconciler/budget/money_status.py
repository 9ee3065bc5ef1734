"""
Money Status

Answers "how much of this month's money is still free?"

    spent       = completed expenses (actual cost)
                + what budget categories have already consumed
    spoken_for  = upcoming expenses (estimated cost)
                + what budget categories still have left
    unallocated = max(0, budget + income received + income expected
                         - spent - spoken_for)

Calendar events carry no money and cancelled events are ignored.
Everything here is a pure read.
"""

import calendar
from datetime import date
from uuid import UUID

import structlog

from reconciler.models.ledger import (
    CategoryType,
    Event,
    EventStatus,
    EventType,
    MerchantCategory,
    Transaction,
)
from reconciler.models.results import (
    CategoryBudgetStatus,
    CategorySpending,
    MoneyStatus,
)
from reconciler.services.storage import LedgerStorageInterface


logger = structlog.get_logger()


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last calendar day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def summarize_events(status: MoneyStatus, events: list[Event]) -> None:
    """Add each expense/income event to the matching bucket of status."""
    for event in events:
        if not event.counts_toward_money:
            continue

        if event.event_type == EventType.EXPENSE:
            if event.status == EventStatus.COMPLETED:
                status.spent += event.actual_cost or 0
                status.spent_events.append(event)
            elif event.status == EventStatus.UPCOMING:
                status.spoken_for += event.estimated_cost
                status.spoken_for_events.append(event)
        elif event.event_type == EventType.INCOME:
            if event.status == EventStatus.COMPLETED:
                status.income_received += event.actual_cost or 0
                status.income_received_events.append(event)
            elif event.status == EventStatus.UPCOMING:
                status.income_expected += event.estimated_cost
                status.income_expected_events.append(event)


def category_spent(category: MerchantCategory, transactions: list[Transaction]) -> tuple[int, int]:
    """
    (sum of amounts, count) of visible transactions tagged with the category.

    Transactions linked to an event are left out: they are already counted
    through the event's actual cost.
    """
    tagged = [
        tx for tx in transactions
        if tx.category_id == category.id
        and not tx.is_hidden
        and tx.linked_event_id is None
    ]
    return sum(tx.amount for tx in tagged), len(tagged)


class MoneyStatusAggregator:
    """Computes month summaries from events, categories and transactions."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def compute(self, family_id: UUID, year: int, month: int) -> MoneyStatus:
        """
        Build the money status for one month.

        Raises:
            StorageError: If a read fails
        """
        start, end = month_bounds(year, month)

        family = await self._storage.get_family(family_id)
        events = await self._storage.list_events(family_id, date_from=start, date_to=end)
        budget_categories = await self._storage.list_categories(
            family_id, category_type=CategoryType.BUDGET
        )
        transactions: list[Transaction] = []
        if budget_categories:
            transactions = await self._storage.list_transactions(
                family_id, date_from=start, date_to=end, include_hidden=False
            )

        status = MoneyStatus(
            year=year,
            month=month,
            budget=family.monthly_budget if family else 0,
        )
        summarize_events(status, events)

        for category in budget_categories:
            spent, _ = category_spent(category, transactions)
            remaining = max(0, (category.monthly_budget or 0) - spent)
            status.spent += spent
            status.spoken_for += remaining
            status.category_spending.append(CategorySpending(
                category_id=category.id,
                category_name=category.name,
                spent=spent,
                budget_remaining=remaining,
            ))

        status.unallocated = max(
            0, status.total_available - status.spent - status.spoken_for
        )

        logger.debug(
            "money_status_computed",
            family_id=str(family_id),
            year=year,
            month=month,
            unallocated=status.unallocated,
        )
        return status

    async def category_budget_status(
        self,
        family_id: UUID,
        year: int,
        month: int,
    ) -> list[CategoryBudgetStatus]:
        """
        Per budget category: budget, spent and remaining for the month.

        Unlike compute(), remaining here goes negative when a category
        is overspent. Sorted by category name.
        """
        start, end = month_bounds(year, month)
        categories = await self._storage.list_categories(
            family_id, category_type=CategoryType.BUDGET
        )
        transactions = await self._storage.list_transactions(
            family_id, date_from=start, date_to=end, include_hidden=False
        )

        statuses = []
        for category in categories:
            spent, count = category_spent(category, transactions)
            budget = category.monthly_budget or 0
            statuses.append(CategoryBudgetStatus(
                category=category,
                budget=budget,
                spent=spent,
                remaining=budget - spent,
                transaction_count=count,
            ))

        statuses.sort(key=lambda s: s.category.name.lower())
        return statuses
