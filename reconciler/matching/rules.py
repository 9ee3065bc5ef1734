"""
Merchant Category and Rule Management

Create, update and delete the keyword rules the auto-match engine uses.
Keywords are normalized (trimmed, lowercased, blanks dropped) before they
are stored.

Creating or updating a category, and creating a legacy rule, immediately
runs auto-match so existing unlinked transactions pick up the new rule.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from reconciler.audit import AuditLogger
from reconciler.matching.engine import AutoMatchEngine
from reconciler.models.audit import AuditEventType
from reconciler.models.ledger import (
    CategoryType,
    MerchantCategory,
    MerchantRule,
    normalize_keywords,
)
from reconciler.models.results import ActionResult
from reconciler.services.storage import (
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger()


class RuleValidationError(Exception):
    """A category or rule definition is invalid."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def _first_error(error: ValidationError) -> str:
    message = error.errors()[0]["msg"]
    # pydantic prefixes messages raised from validators
    return message.removeprefix("Value error, ")


class RuleManager:
    """Category/rule CRUD. All methods return ActionResult."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        engine: AutoMatchEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._engine = engine
        self._audit = audit_logger or AuditLogger()

    async def _validate_category(
        self,
        family_id: UUID,
        name: str,
        keywords: list[str],
        category_type: CategoryType,
        monthly_budget: Optional[int],
        event_id: Optional[UUID],
    ) -> dict:
        """
        Check a category definition and return the normalized fields.

        Raises:
            RuleValidationError: With a message fit for the user
        """
        name = (name or "").strip()
        if not name:
            raise RuleValidationError("Name is required")

        cleaned = normalize_keywords(keywords)
        if not cleaned:
            raise RuleValidationError("At least one keyword is required")

        if category_type == CategoryType.BUDGET:
            if not monthly_budget:
                raise RuleValidationError("Monthly budget is required for budget-type categories")
            event_id = None
        else:
            if not event_id:
                raise RuleValidationError("Event is required for event-type categories")
            if await self._storage.get_event(family_id, event_id) is None:
                raise RuleValidationError("Event not found")
            monthly_budget = None

        return {
            "name": name,
            "keywords": cleaned,
            "category_type": category_type,
            "monthly_budget": monthly_budget,
            "event_id": event_id,
        }

    async def create_category(
        self,
        family_id: UUID,
        name: str,
        keywords: list[str],
        category_type: CategoryType,
        monthly_budget: Optional[int] = None,
        event_id: Optional[UUID] = None,
    ) -> ActionResult:
        try:
            fields = await self._validate_category(
                family_id, name, keywords, category_type, monthly_budget, event_id
            )
            category = MerchantCategory(family_id=family_id, **fields)
            await self._storage.save_category(category)
        except RuleValidationError as e:
            return ActionResult.failed(e.message)
        except ValidationError as e:
            return ActionResult.failed(_first_error(e))
        except DuplicateError:
            return ActionResult.failed("A category with this name already exists")
        except StorageError as e:
            logger.error("category_create_failed", error=str(e))
            return ActionResult.failed("Failed to save category")

        await self._audit.log_rule_changed(
            AuditEventType.CATEGORY_CREATED, family_id, category.id, category.name
        )
        match_result = await self._engine.run(family_id)
        return ActionResult(success=True, entity_id=category.id, match_result=match_result)

    async def update_category(
        self,
        family_id: UUID,
        category_id: UUID,
        name: str,
        keywords: list[str],
        category_type: CategoryType,
        monthly_budget: Optional[int] = None,
        event_id: Optional[UUID] = None,
    ) -> ActionResult:
        try:
            existing = await self._storage.get_category(family_id, category_id)
            if existing is None:
                return ActionResult.failed("Category not found")
            fields = await self._validate_category(
                family_id, name, keywords, category_type, monthly_budget, event_id
            )
            updated = MerchantCategory.model_validate({
                **existing.model_dump(),
                **fields,
                "updated_at": datetime.utcnow(),
            })
            await self._storage.update_category(updated)
        except RuleValidationError as e:
            return ActionResult.failed(e.message)
        except ValidationError as e:
            return ActionResult.failed(_first_error(e))
        except DuplicateError:
            return ActionResult.failed("A category with this name already exists")
        except StorageError as e:
            logger.error("category_update_failed", error=str(e))
            return ActionResult.failed("Failed to save category")

        await self._audit.log_rule_changed(
            AuditEventType.CATEGORY_UPDATED, family_id, updated.id, updated.name
        )
        match_result = await self._engine.run(family_id)
        return ActionResult(success=True, entity_id=updated.id, match_result=match_result)

    async def delete_category(self, family_id: UUID, category_id: UUID) -> ActionResult:
        """Delete a category. Its transactions lose their tag but keep any event link."""
        try:
            category = await self._storage.get_category(family_id, category_id)
            if category is None or not await self._storage.delete_category(family_id, category_id):
                return ActionResult.failed("Category not found")
        except StorageError as e:
            logger.error("category_delete_failed", error=str(e))
            return ActionResult.failed("Failed to delete category")

        await self._audit.log_rule_changed(
            AuditEventType.CATEGORY_DELETED, family_id, category_id, category.name
        )
        return ActionResult(success=True, entity_id=category_id)

    async def create_rule(
        self,
        family_id: UUID,
        keyword: str,
        event_id: UUID,
    ) -> ActionResult:
        keyword = (keyword or "").strip().lower()
        if not keyword:
            return ActionResult.failed("Keyword is required")

        try:
            if await self._storage.get_event(family_id, event_id) is None:
                return ActionResult.failed("Event not found")
            rule = MerchantRule(family_id=family_id, keyword=keyword, event_id=event_id)
            await self._storage.save_rule(rule)
        except ValidationError as e:
            return ActionResult.failed(_first_error(e))
        except DuplicateError:
            return ActionResult.failed("A rule with this keyword already exists")
        except StorageError as e:
            logger.error("rule_create_failed", error=str(e))
            return ActionResult.failed("Failed to save rule")

        await self._audit.log_rule_changed(
            AuditEventType.RULE_CREATED, family_id, rule.id, rule.keyword
        )
        match_result = await self._engine.run(family_id)
        return ActionResult(success=True, entity_id=rule.id, match_result=match_result)

    async def delete_rule(self, family_id: UUID, rule_id: UUID) -> ActionResult:
        try:
            rules = {r.id: r for r in await self._storage.list_rules(family_id)}
            if rule_id not in rules or not await self._storage.delete_rule(family_id, rule_id):
                return ActionResult.failed("Rule not found")
        except StorageError as e:
            logger.error("rule_delete_failed", error=str(e))
            return ActionResult.failed("Failed to delete rule")

        await self._audit.log_rule_changed(
            AuditEventType.RULE_DELETED, family_id, rule_id, rules[rule_id].keyword
        )
        return ActionResult(success=True, entity_id=rule_id)
