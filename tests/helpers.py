"""
Test helpers: storage doubles and a fully wired engine harness.

Everything runs against the in-memory backend. The failing storages below
stand in for a document store that is down or flaky, so best-effort
behaviour can be checked without mocks.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional

from finance_engine.audit import AuditLogger
from finance_engine.engine.secondary import SecondaryStepRunner
from finance_engine.errors import StorageError
from finance_engine.models.audit import AuditEventType
from finance_engine.models.bill import NewBill
from finance_engine.models.budget import Budget, BudgetPeriod
from finance_engine.orchestrator import BillFlow, BudgetFlow, GoalFlow, TransactionFlow
from finance_engine.services.storage import (
    InMemoryAuditStorage,
    InMemoryBillStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryTransactionStorage,
)


USER = "user-1"
OTHER_USER = "user-2"
TODAY = date(2025, 1, 15)


# =============================================================================
# FAILING STORAGE DOUBLES
# =============================================================================

class FailingBudgetStorage(InMemoryBudgetStorage):
    """Budget storage whose delta writes fail for chosen budgets (or all)."""

    def __init__(self, fail_ids: Optional[set] = None, fail_all: bool = False):
        super().__init__()
        self.fail_ids = fail_ids or set()
        self.fail_all = fail_all

    async def apply_spent_delta(self, user_id, budget_id, delta):
        if self.fail_all or budget_id in self.fail_ids:
            raise StorageError(f"write to budget {budget_id} failed")
        return await super().apply_spent_delta(user_id, budget_id, delta)


class FailingTransactionStorage(InMemoryTransactionStorage):
    """Transaction storage that cannot save."""

    async def save_transaction(self, transaction):
        raise StorageError("transaction store unavailable")


class FlakyTransactionStorage(InMemoryTransactionStorage):
    """Metadata deletes fail a fixed number of times, then succeed."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.delete_calls = 0

    async def delete_by_metadata(self, user_id, match):
        self.delete_calls += 1
        if self.delete_calls <= self.failures:
            raise StorageError("transient delete failure")
        return await super().delete_by_metadata(user_id, match)


class BrokenBillStorage(InMemoryBillStorage):
    """Bill storage whose saves blow up with a non-engine error."""

    async def save_bill(self, bill):
        raise RuntimeError("disk on fire")


# =============================================================================
# HARNESS
# =============================================================================

class EngineHarness:
    """All four flows wired over shared in-memory storages."""

    def __init__(
        self,
        bills=None,
        transactions=None,
        budgets=None,
        goals=None,
    ):
        self.bills = bills or InMemoryBillStorage()
        self.transactions = transactions or InMemoryTransactionStorage()
        self.budgets = budgets or InMemoryBudgetStorage()
        self.goals = goals or InMemoryGoalStorage()
        self.audit_storage = InMemoryAuditStorage()
        self.audit_logger = AuditLogger(self.audit_storage)
        self.runner = SecondaryStepRunner(
            self.audit_logger, attempts=3, min_wait=0, max_wait=0
        )

        def today():
            return TODAY

        self.bill_flow = BillFlow(
            self.bills,
            self.transactions,
            self.budgets,
            audit_logger=self.audit_logger,
            runner=self.runner,
            today=today,
            bill_category="Bills",
            settlement_category="Bill Settlement",
        )
        self.transaction_flow = TransactionFlow(
            self.transactions,
            self.budgets,
            audit_logger=self.audit_logger,
            runner=self.runner,
            today=today,
        )
        self.budget_flow = BudgetFlow(
            self.budgets,
            self.transactions,
            audit_logger=self.audit_logger,
            today=today,
            on_track_threshold=80.0,
        )
        self.goal_flow = GoalFlow(
            self.goals,
            self.transactions,
            self.budgets,
            audit_logger=self.audit_logger,
            runner=self.runner,
            today=today,
        )

    def events(self, event_type: AuditEventType) -> list:
        return [e for e in self.audit_storage.events if e.event_type == event_type]

    def transactions_of(self, user_id: str = USER) -> list:
        return asyncio.run(self.transactions.list_transactions(user_id))

    def add_budget(
        self,
        category: str,
        amount: str = "100",
        spent: str = "0",
        start: date = date(2025, 1, 1),
        end: date = date(2025, 1, 31),
        user_id: str = USER,
        **extra,
    ) -> Budget:
        budget = Budget(
            user_id=user_id,
            name=f"{category} budget",
            amount=Decimal(amount),
            spent=Decimal(spent),
            period=BudgetPeriod.MONTHLY,
            category=category,
            start_date=start,
            end_date=end,
            **extra,
        )
        asyncio.run(self.budgets.save_budget(budget))
        return budget

    def budget(self, budget_id, user_id: str = USER) -> Budget:
        return asyncio.run(self.budgets.get_budget(user_id, budget_id))


def dinner_request(**overrides) -> NewBill:
    """A{payer}, B, C sharing a 30.00 dinner: 10.00 each."""
    data = {
        "description": "Team dinner",
        "paid_by": "A",
        "participants": ["A", "B", "C"],
        "date": TODAY,
        "items": [
            {"name": "Pizza", "amount": "30.00", "participant_ids": ["A", "B", "C"]},
        ],
    }
    data.update(overrides)
    return NewBill.model_validate(data)

