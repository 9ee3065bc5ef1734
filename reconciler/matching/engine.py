"""
Auto-Match Engine

Links a family's unlinked transactions to events and tags them with
merchant categories.

MATCHING ORDER (first success wins, per transaction):
1. Event title: the merchant text contains the event title, the title
   contains the merchant text, or they share a significant keyword.
   The transaction must fall in the event's month (widened by a few
   days at both ends).
2. Merchant category: any keyword is a substring of the merchant text.
   - budget categories only tag category_id; no date check, and any
     number of transactions may share a category
   - event categories tag and link to the category's event; the event
     must exist and the transaction must fall in its month; any number
     of transactions may share the event
3. Legacy keyword rule: the keyword is a substring of the merchant text;
   same month check as titles.

Title and rule matches are one-to-one: an event that already has a linked
transaction, or that was claimed earlier in this run, is skipped.
Cancelled and calendar events are never title or rule targets.

There is deliberately no amount+date matching: equal amounts around the
same date link unrelated transactions too often.
"""

import calendar
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

import structlog

from reconciler.audit import AuditLogger
from reconciler.config import get_settings
from reconciler.matching.keywords import titles_match
from reconciler.matching.linking import LinkService
from reconciler.models.ledger import (
    CategoryType,
    Event,
    EventStatus,
    EventType,
    MatchType,
    MerchantCategory,
    MerchantRule,
    Transaction,
)
from reconciler.models.results import MatchDetail, MatchResult
from reconciler.services.storage import (
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger()


class ClaimTracker:
    """
    Which events are taken for one-to-one matching during a run.

    Seeded with every event that already has a linked transaction;
    events linked during the run are added as they are claimed.
    """

    def __init__(self, already_linked: set[UUID]):
        self._linked = set(already_linked)
        self._claimed_this_run: set[UUID] = set()

    def is_available(self, event_id: UUID) -> bool:
        return event_id not in self._linked and event_id not in self._claimed_this_run

    def claim(self, event_id: UUID) -> None:
        self._claimed_this_run.add(event_id)

    @property
    def claimed_this_run(self) -> frozenset[UUID]:
        return frozenset(self._claimed_this_run)


def month_window(event_date: date, tolerance_days: int) -> tuple[date, date]:
    """First and last day of the event's month, widened by tolerance_days."""
    last_day = calendar.monthrange(event_date.year, event_date.month)[1]
    start = event_date.replace(day=1) - timedelta(days=tolerance_days)
    end = event_date.replace(day=last_day) + timedelta(days=tolerance_days)
    return start, end


def in_event_month(tx_date: date, event_date: date, tolerance_days: int) -> bool:
    start, end = month_window(event_date, tolerance_days)
    return start <= tx_date <= end


def is_one_to_one_target(event: Event) -> bool:
    """Events a title or rule match may link to."""
    return event.status != EventStatus.CANCELLED and event.event_type != EventType.CALENDAR


class AutoMatchEngine:
    """
    Runs the matching pass for one family.

    Usage:
        engine = AutoMatchEngine(storage, audit_logger)
        result = await engine.run(family_id)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        link_service: Optional[LinkService] = None,
        tolerance_days: Optional[int] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._links = link_service or LinkService(storage, self._audit)
        if tolerance_days is None:
            tolerance_days = get_settings().matching.month_boundary_tolerance_days
        self._tolerance_days = tolerance_days

    async def run(
        self,
        family_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> MatchResult:
        """
        Match every unlinked, visible, auto-matchable transaction.

        Returns:
            MatchResult; success=False if storage failed mid-run
            (matches made before the failure are kept and reported)
        """
        result = MatchResult()
        log = logger.bind(family_id=str(family_id))

        try:
            transactions = [
                tx for tx in await self._storage.list_transactions(
                    family_id, linked=False, include_hidden=False
                )
                if not tx.skip_auto_match
            ]
            if not transactions:
                return result

            categories = await self._storage.list_categories(family_id)
            rules = await self._storage.list_rules(family_id)
            events = await self._storage.list_events(family_id)
            claims = ClaimTracker(await self._storage.linked_event_ids(family_id))

            event_map = {event.id: event for event in events}
            budget_ids = frozenset(
                c.id for c in categories if c.category_type == CategoryType.BUDGET
            )
            for tx in transactions:
                detail = await self._match_one(
                    family_id, tx, event_map, categories, rules, claims, budget_ids
                )
                if detail:
                    result.record(detail)
        except StorageError as e:
            log.error("auto_match_failed", error=str(e), matched=result.matched)
            await self._audit.log_error(
                error_type="auto_match_failed",
                error_message=str(e),
                details={"family_id": str(family_id), "matched": result.matched},
                correlation_id=correlation_id,
            )
            result.success = False
            result.error_message = "Auto-match failed"
            return result

        by_type: dict[str, int] = {}
        for detail in result.details:
            by_type[detail.match_type.value] = by_type.get(detail.match_type.value, 0) + 1
        log.info("auto_match_completed", matched=result.matched, by_type=by_type)
        await self._audit.log_auto_match_completed(
            family_id, result.matched, by_type, correlation_id
        )
        return result

    async def _match_one(
        self,
        family_id: UUID,
        tx: Transaction,
        event_map: dict[UUID, Event],
        categories: list[MerchantCategory],
        rules: list[MerchantRule],
        claims: ClaimTracker,
        budget_ids: frozenset[UUID],
    ) -> Optional[MatchDetail]:
        merchant = tx.display_name.lower()

        # Spend tagged with a budget category never also links to an event
        if tx.category_id is not None and tx.category_id in budget_ids:
            return None

        detail = await self._match_title(family_id, tx, merchant, event_map, claims)
        if detail:
            return detail

        # A category set earlier (by a previous run or by hand) is left alone
        if tx.category_id is None:
            detail = await self._match_category(family_id, tx, merchant, event_map, categories, claims)
            if detail:
                return detail

        return await self._match_rule(family_id, tx, merchant, event_map, rules, claims)

    async def _link_exclusive(
        self,
        family_id: UUID,
        tx: Transaction,
        event: Event,
        match_type: MatchType,
        event_map: dict[UUID, Event],
        claims: ClaimTracker,
    ) -> Optional[MatchDetail]:
        try:
            await self._links.link(family_id, tx, event, match_type, exclusive=True)
        except DuplicateError:
            # Linked by a concurrent run since we loaded the claims
            claims.claim(event.id)
            return None
        claims.claim(event.id)
        event_map[event.id] = event.completed_with(tx.amount)
        return MatchDetail(
            transaction_id=tx.id,
            event_id=event.id,
            transaction_name=tx.name,
            target_name=event.title,
            match_type=match_type,
        )

    async def _match_title(
        self,
        family_id: UUID,
        tx: Transaction,
        merchant: str,
        event_map: dict[UUID, Event],
        claims: ClaimTracker,
    ) -> Optional[MatchDetail]:
        for event in list(event_map.values()):
            if not is_one_to_one_target(event) or not claims.is_available(event.id):
                continue
            if not in_event_month(tx.date, event.event_date, self._tolerance_days):
                continue
            if not titles_match(merchant, event.title):
                continue
            detail = await self._link_exclusive(
                family_id, tx, event, MatchType.EVENT_TITLE, event_map, claims
            )
            if detail:
                return detail
        return None

    async def _match_category(
        self,
        family_id: UUID,
        tx: Transaction,
        merchant: str,
        event_map: dict[UUID, Event],
        categories: list[MerchantCategory],
        claims: ClaimTracker,
    ) -> Optional[MatchDetail]:
        for category in categories:
            if not category.matches(merchant):
                continue

            if category.category_type == CategoryType.BUDGET:
                await self._storage.update_transaction(
                    tx.model_copy(update={"category_id": category.id})
                )
                await self._audit.log_transaction_categorized(
                    family_id, tx.id, category.id, is_user_action=False
                )
                return MatchDetail(
                    transaction_id=tx.id,
                    category_id=category.id,
                    transaction_name=tx.name,
                    target_name=category.name,
                    match_type=MatchType.CATEGORY,
                )

            event = event_map.get(category.event_id)
            if event is None:
                continue
            if not in_event_month(tx.date, event.event_date, self._tolerance_days):
                continue

            tagged = tx.model_copy(update={"category_id": category.id})
            await self._storage.update_transaction(tagged)
            await self._links.link(family_id, tagged, event, MatchType.CATEGORY, exclusive=False)
            # Shared with the category, but no longer free for one-to-one matches
            claims.claim(event.id)
            event_map[event.id] = event.completed_with(tx.amount)
            return MatchDetail(
                transaction_id=tx.id,
                event_id=event.id,
                category_id=category.id,
                transaction_name=tx.name,
                target_name=event.title,
                match_type=MatchType.CATEGORY,
            )
        return None

    async def _match_rule(
        self,
        family_id: UUID,
        tx: Transaction,
        merchant: str,
        event_map: dict[UUID, Event],
        rules: list[MerchantRule],
        claims: ClaimTracker,
    ) -> Optional[MatchDetail]:
        for rule in rules:
            if not rule.matches(merchant):
                continue
            event = event_map.get(rule.event_id)
            if event is None or not is_one_to_one_target(event):
                continue
            if not claims.is_available(event.id):
                continue
            if not in_event_month(tx.date, event.event_date, self._tolerance_days):
                continue
            detail = await self._link_exclusive(
                family_id, tx, event, MatchType.KEYWORD_RULE, event_map, claims
            )
            if detail:
                return detail
        return None
