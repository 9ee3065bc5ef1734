"""
Transaction ↔ Event Linking

Every change to a transaction's linkage goes through this module so the
event side stays consistent:

- linking a transaction completes its event at the transaction's amount
- removing the last link to an event puts it back to upcoming with no
  actual cost

The auto-match engine uses link() directly. The other methods are the
user-driven actions (manual link, unlink, reopen, category assignment,
hide/unhide, event from transaction); they return ActionResult and never
raise.
"""

from typing import Optional
from uuid import UUID

import structlog

from reconciler.audit import AuditLogger
from reconciler.models.ledger import (
    CategoryType,
    Event,
    EventStatus,
    EventType,
    MatchType,
    Transaction,
)
from reconciler.models.results import ActionResult
from reconciler.services.storage import (
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger()


class LinkService:
    """Applies link/unlink and the matching event status changes."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    async def link(
        self,
        family_id: UUID,
        transaction: Transaction,
        event: Event,
        match_type: MatchType,
        exclusive: bool = True,
        is_user_action: bool = False,
    ) -> Transaction:
        """
        Link a transaction to an event and complete the event.

        Raises:
            DuplicateError: exclusive and another transaction holds the event
            StorageError: the write failed
        """
        linked = await self._storage.link_transaction(
            family_id, transaction.id, event.id, exclusive=exclusive
        )
        await self._storage.update_event(event.completed_with(transaction.amount))
        await self._audit.log_transaction_linked(
            family_id=family_id,
            transaction_id=transaction.id,
            event_id=event.id,
            match_type=match_type.value,
            amount=transaction.amount,
            is_user_action=is_user_action,
        )
        return linked

    async def _detach(self, family_id: UUID, transaction: Transaction) -> None:
        """Unlink a transaction; reopen its event if nothing else links it."""
        event_id = transaction.linked_event_id
        if event_id is None:
            return

        await self._storage.unlink_transaction(family_id, transaction.id)
        remaining = [
            tx for tx in await self._storage.list_transactions(family_id, linked=True)
            if tx.linked_event_id == event_id
        ]
        event = await self._storage.get_event(family_id, event_id)
        if event and not remaining and event.status == EventStatus.COMPLETED:
            await self._storage.update_event(event.reopened())
        await self._audit.log_transaction_unlinked(family_id, transaction.id, event_id)

    async def link_transaction_to_event(
        self,
        family_id: UUID,
        transaction_id: UUID,
        event_id: UUID,
    ) -> ActionResult:
        """User links a transaction to an event by hand."""
        try:
            tx = await self._storage.get_transaction(family_id, transaction_id)
            if tx is None:
                return ActionResult.failed("Transaction not found")
            event = await self._storage.get_event(family_id, event_id)
            if event is None:
                return ActionResult.failed("Event not found")
            if tx.linked_event_id == event_id:
                return ActionResult(success=True, entity_id=event_id)

            if tx.linked_event_id is not None:
                await self._detach(family_id, tx)
                tx = tx.model_copy(update={"linked_event_id": None})
                event = await self._storage.get_event(family_id, event_id)

            await self.link(
                family_id, tx, event, MatchType.EVENT_TITLE,
                exclusive=True, is_user_action=True,
            )
            return ActionResult(success=True, entity_id=event_id)
        except DuplicateError:
            return ActionResult.failed("This event is already linked to another transaction")
        except StorageError as e:
            logger.error("manual_link_failed", error=str(e), transaction_id=str(transaction_id))
            return ActionResult.failed("Failed to link transaction")

    async def unlink_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
    ) -> ActionResult:
        """User removes a transaction's event link; the event goes back to upcoming."""
        try:
            tx = await self._storage.get_transaction(family_id, transaction_id)
            if tx is None:
                return ActionResult.failed("Transaction not found")
            if tx.linked_event_id is None:
                return ActionResult.failed("Transaction is not linked to an event")
            event_id = tx.linked_event_id
            await self._detach(family_id, tx)
            return ActionResult(success=True, entity_id=event_id)
        except StorageError as e:
            logger.error("unlink_failed", error=str(e), transaction_id=str(transaction_id))
            return ActionResult.failed("Failed to unlink transaction")

    async def reopen_event(self, family_id: UUID, event_id: UUID) -> ActionResult:
        """Put a completed event back to upcoming and release its transactions."""
        try:
            event = await self._storage.get_event(family_id, event_id)
            if event is None:
                return ActionResult.failed("Event not found")

            linked = [
                tx for tx in await self._storage.list_transactions(family_id, linked=True)
                if tx.linked_event_id == event_id
            ]
            for tx in linked:
                await self._storage.unlink_transaction(family_id, tx.id)

            if event.status == EventStatus.COMPLETED:
                await self._storage.update_event(event.reopened())
            await self._audit.log_event_reopened(family_id, event_id, len(linked))
            return ActionResult(success=True, entity_id=event_id)
        except StorageError as e:
            logger.error("reopen_failed", error=str(e), event_id=str(event_id))
            return ActionResult.failed("Failed to reopen event")

    async def set_transaction_category(
        self,
        family_id: UUID,
        transaction_id: UUID,
        category_id: Optional[UUID],
    ) -> ActionResult:
        """
        Tag a transaction with a category, or clear its category.

        An event-type category also links the transaction to the category's
        event. Clearing the category also removes any event link.
        """
        try:
            tx = await self._storage.get_transaction(family_id, transaction_id)
            if tx is None:
                return ActionResult.failed("Transaction not found")

            if category_id is None:
                if tx.linked_event_id is not None:
                    await self._detach(family_id, tx)
                    tx = tx.model_copy(update={"linked_event_id": None})
                await self._storage.update_transaction(tx.model_copy(update={"category_id": None}))
                await self._audit.log_transaction_categorized(family_id, transaction_id, None)
                return ActionResult(success=True, entity_id=transaction_id)

            category = await self._storage.get_category(family_id, category_id)
            if category is None:
                return ActionResult.failed("Category not found")

            tagged = tx.model_copy(update={"category_id": category_id})
            await self._storage.update_transaction(tagged)
            await self._audit.log_transaction_categorized(family_id, transaction_id, category_id)

            if category.category_type == CategoryType.EVENT:
                event = await self._storage.get_event(family_id, category.event_id)
                if event is None:
                    return ActionResult.failed("Event not found")
                if tagged.linked_event_id not in (None, event.id):
                    await self._detach(family_id, tagged)
                    tagged = tagged.model_copy(update={"linked_event_id": None})
                    event = await self._storage.get_event(family_id, category.event_id)
                if tagged.linked_event_id is None:
                    await self.link(
                        family_id, tagged, event, MatchType.CATEGORY,
                        exclusive=False, is_user_action=True,
                    )

            return ActionResult(success=True, entity_id=transaction_id)
        except StorageError as e:
            logger.error("set_category_failed", error=str(e), transaction_id=str(transaction_id))
            return ActionResult.failed("Failed to update transaction")

    async def create_event_from_transaction(
        self,
        family_id: UUID,
        transaction_id: UUID,
    ) -> ActionResult:
        """
        Create a completed event mirroring a transaction and link the two.

        Positive amounts become expense events, anything else income.
        """
        try:
            tx = await self._storage.get_transaction(family_id, transaction_id)
            if tx is None:
                return ActionResult.failed("Transaction not found")
            if tx.linked_event_id is not None:
                await self._detach(family_id, tx)
                tx = tx.model_copy(update={"linked_event_id": None})

            event = Event(
                family_id=family_id,
                title=tx.display_name[:200],
                event_date=tx.date,
                event_type=EventType.EXPENSE if tx.amount > 0 else EventType.INCOME,
                status=EventStatus.COMPLETED,
                estimated_cost=abs(tx.amount),
                actual_cost=tx.amount,
            )
            await self._storage.save_event(event)
            await self.link(
                family_id, tx, event, MatchType.EVENT_TITLE,
                exclusive=True, is_user_action=True,
            )
            return ActionResult(success=True, entity_id=event.id)
        except StorageError as e:
            logger.error("create_event_failed", error=str(e), transaction_id=str(transaction_id))
            return ActionResult.failed("Failed to create event")

    async def set_hidden(
        self,
        family_id: UUID,
        transaction_id: UUID,
        hidden: bool,
    ) -> ActionResult:
        """Hide or unhide a transaction. Hidden transactions are never auto-matched."""
        try:
            tx = await self._storage.get_transaction(family_id, transaction_id)
            if tx is None:
                return ActionResult.failed("Transaction not found")
            await self._storage.update_transaction(tx.model_copy(update={"is_hidden": hidden}))
            return ActionResult(success=True, entity_id=transaction_id)
        except StorageError as e:
            logger.error("hide_failed", error=str(e), transaction_id=str(transaction_id))
            return ActionResult.failed("Failed to update transaction")

    async def hide_transaction(self, family_id: UUID, transaction_id: UUID) -> ActionResult:
        return await self.set_hidden(family_id, transaction_id, True)

    async def unhide_transaction(self, family_id: UUID, transaction_id: UUID) -> ActionResult:
        return await self.set_hidden(family_id, transaction_id, False)
