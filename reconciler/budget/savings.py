"""
Savings Goal Projection

Progress is measured against a straight line from the goal's creation
to its target date, counted in calendar months (the day of the month is
ignored). Projections are derived on demand and never stored.
"""

import math
from datetime import date
from typing import Optional
from uuid import UUID

from reconciler.audit import AuditLogger
from reconciler.models.ledger import SavingsGoal
from reconciler.models.results import (
    ActionResult,
    SavingsProjection,
    SavingsStatus,
)
from reconciler.services.storage import LedgerStorageInterface, StorageError


ON_TRACK_TOLERANCE = 0.05  # of the target amount


def months_between(start: date, end: date) -> int:
    """Calendar months from start to end; negative if end is earlier."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_monthly_contribution(goal: SavingsGoal, today: Optional[date] = None) -> int:
    """
    Cents to save each month to reach the target on time.

    Rounded up so the recommendation never falls short. 0 once the goal
    is reached.
    """
    today = today or date.today()
    remaining = goal.target_amount - goal.current_amount
    if remaining <= 0:
        return 0
    months_remaining = max(1, months_between(today, goal.target_date))
    return math.ceil(remaining / months_remaining)


def calculate_savings_status(goal: SavingsGoal, today: Optional[date] = None) -> SavingsProjection:
    """
    Compare saved-so-far with where a linear schedule says it should be.

    ahead / behind when the difference is more than 5% of the target,
    on-track otherwise.
    """
    today = today or date.today()

    if goal.current_amount >= goal.target_amount:
        return SavingsProjection(
            status=SavingsStatus.COMPLETED,
            expected_amount=goal.target_amount,
            difference=goal.current_amount - goal.target_amount,
            months_remaining=0,
            monthly_contribution=0,
        )

    created = goal.created_at.date()
    total_months = max(1, months_between(created, goal.target_date))
    months_elapsed = max(0, months_between(created, today))
    months_remaining = max(1, months_between(today, goal.target_date))

    expected = _round_half_up(goal.target_amount / total_months * months_elapsed)
    difference = goal.current_amount - expected
    tolerance = goal.target_amount * ON_TRACK_TOLERANCE

    if difference > tolerance:
        status = SavingsStatus.AHEAD
    elif difference < -tolerance:
        status = SavingsStatus.BEHIND
    else:
        status = SavingsStatus.ON_TRACK

    return SavingsProjection(
        status=status,
        expected_amount=expected,
        difference=difference,
        months_remaining=months_remaining,
        monthly_contribution=calculate_monthly_contribution(goal, today),
    )


class SavingsService:
    """Contributions to savings goals."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    async def contribute_to_goal(
        self,
        family_id: UUID,
        goal_id: UUID,
        amount: int,
    ) -> ActionResult:
        """Add a positive amount (cents) to a goal's current amount."""
        if amount <= 0:
            return ActionResult.failed("Contribution must be positive")

        try:
            goal = await self._storage.get_goal(family_id, goal_id)
            if goal is None:
                return ActionResult.failed("Savings goal not found")

            # Revalidate so is_completed is derived from the new amount
            updated = SavingsGoal.model_validate({
                **goal.model_dump(),
                "current_amount": goal.current_amount + amount,
            })
            await self._storage.update_goal(updated)
        except StorageError:
            return ActionResult.failed("Failed to update savings goal")

        await self._audit.log_savings_contribution(
            family_id=family_id,
            goal_id=goal_id,
            amount=amount,
            new_total=updated.current_amount,
            completed=updated.is_completed,
        )
        return ActionResult(success=True, entity_id=goal_id)
