"""Money status and savings projections."""

from reconciler.budget.money_status import MoneyStatusAggregator, month_bounds
from reconciler.budget.savings import (
    SavingsService,
    calculate_monthly_contribution,
    calculate_savings_status,
    months_between,
)

__all__ = [
    "MoneyStatusAggregator",
    "SavingsService",
    "calculate_monthly_contribution",
    "calculate_savings_status",
    "month_bounds",
    "months_between",
]
