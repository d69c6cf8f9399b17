"""
Budget Synchronizer

The single place where ``Budget.spent`` moves in response to spending.
Transactions, bills and goals all call ``apply_delta``; none of them touch
budgets directly.

CRITICAL: Callers own the sign and the category/date of each delta. When an
expense is edited, the negative leg must use the expense's OLD category and
date and the positive leg the NEW ones, or spend leaks into the wrong budget.

Matched budgets are updated one at a time through the storage backend's
``apply_spent_delta``. A failure on one budget is logged and recorded in the
result; the remaining budgets are still updated.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from finance_engine.models.budget import Budget
from finance_engine.models.money import ZERO, to_money
from finance_engine.models.transaction import Transaction, TransactionType
from finance_engine.services.storage import BudgetStorageInterface


logger = structlog.get_logger("finance_engine.budget_sync")


class BudgetSyncResult(BaseModel):
    """What one ``apply_delta`` call did."""
    category: Optional[str]
    on_date: Optional[date]
    delta: Decimal
    updated: list[Budget] = Field(default_factory=list)
    failed: dict[UUID, str] = Field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return not self.updated and not self.failed

    @property
    def ok(self) -> bool:
        return not self.failed


class BudgetSynchronizer:
    """Applies signed spend deltas to every budget covering a category and date."""

    def __init__(self, budget_storage: BudgetStorageInterface):
        self._budgets = budget_storage

    async def apply_delta(
        self,
        user_id: str,
        category: Optional[str],
        on_date: Optional[date],
        delta,
    ) -> BudgetSyncResult:
        """
        Add ``delta`` to ``spent`` of every matching budget.

        A missing category or date, or a zero delta, is a no-op. Overlapping
        budgets all receive the delta.
        """
        delta = to_money(delta or ZERO)
        result = BudgetSyncResult(category=category, on_date=on_date, delta=delta)

        if not category or not on_date or delta == ZERO:
            return result

        matches = await self._budgets.find_matching_budgets(user_id, category, on_date)

        for budget in matches:
            try:
                updated = await self._budgets.apply_spent_delta(user_id, budget.id, delta)
            except Exception as e:
                logger.error(
                    "budget_delta_failed",
                    user_id=user_id,
                    budget_id=str(budget.id),
                    category=category,
                    date=on_date.isoformat(),
                    delta=str(delta),
                    error=str(e),
                )
                result.failed[budget.id] = str(e)
                continue

            # Deleted between the select and the write
            if updated is not None:
                result.updated.append(updated)

        logger.info(
            "budget_delta_applied",
            user_id=user_id,
            category=category,
            date=on_date.isoformat(),
            delta=str(delta),
            updated=len(result.updated),
            failed=len(result.failed),
        )
        return result

    @staticmethod
    def recompute_spent(budget: Budget, transactions: list[Transaction]) -> Budget:
        """
        Re-derive ``spent`` from scratch.

        Sums the expense transactions the budget covers. This is the repair
        path for deltas that were lost to a suppressed failure.
        """
        spent = sum(
            (
                t.amount
                for t in transactions
                if t.type == TransactionType.EXPENSE
                and t.user_id == budget.user_id
                and budget.covers(t.category, t.date)
            ),
            ZERO,
        )
        return budget.with_amounts(spent=spent)
