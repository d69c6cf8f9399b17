"""
In-Memory Storage Implementation

Default backend for development and the backend every test runs against.

Each collection holds validated model copies keyed by id, so callers can
never mutate stored state by holding on to a returned object. A
per-collection ``asyncio.Lock`` makes ``apply_spent_delta`` a true atomic
increment within one event loop.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from finance_engine.models.audit import AuditEvent
from finance_engine.models.bill import Bill
from finance_engine.models.budget import Budget
from finance_engine.models.goal import Goal
from finance_engine.models.transaction import Transaction, TransactionType
from finance_engine.services.storage.interface import (
    AuditStorageInterface,
    BillStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    TransactionStorageInterface,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


class InMemoryCollection(Generic[ModelT]):
    """Owner-scoped dict of documents."""

    def __init__(self):
        self._documents: dict[UUID, ModelT] = {}
        self.lock = asyncio.Lock()

    def insert(self, document: ModelT) -> None:
        self._documents[document.id] = document.model_copy(deep=True)

    def get(self, user_id: str, document_id: UUID) -> Optional[ModelT]:
        document = self._documents.get(document_id)
        if document is None or document.user_id != user_id:
            return None
        return document.model_copy(deep=True)

    def replace(self, document: ModelT) -> bool:
        existing = self._documents.get(document.id)
        if existing is None or existing.user_id != document.user_id:
            return False
        self._documents[document.id] = document.model_copy(deep=True)
        return True

    def remove(self, user_id: str, document_id: UUID) -> Optional[ModelT]:
        existing = self._documents.get(document_id)
        if existing is None or existing.user_id != user_id:
            return None
        return self._documents.pop(document_id)

    def select(
        self,
        user_id: str,
        predicate: Callable[[ModelT], bool] = lambda _: True,
    ) -> list[ModelT]:
        return [
            document.model_copy(deep=True)
            for document in self._documents.values()
            if document.user_id == user_id and predicate(document)
        ]

    def __len__(self) -> int:
        return len(self._documents)


class InMemoryBillStorage(BillStorageInterface):

    def __init__(self):
        self._bills: InMemoryCollection[Bill] = InMemoryCollection()

    async def save_bill(self, bill: Bill) -> bool:
        self._bills.insert(bill)
        return True

    async def get_bill(self, user_id: str, bill_id: UUID) -> Optional[Bill]:
        return self._bills.get(user_id, bill_id)

    async def update_bill(self, bill: Bill) -> bool:
        return self._bills.replace(bill)

    async def delete_bill(self, user_id: str, bill_id: UUID) -> bool:
        return self._bills.remove(user_id, bill_id) is not None

    async def list_bills(self, user_id: str) -> list[Bill]:
        bills = self._bills.select(user_id)
        bills.sort(key=lambda b: b.date, reverse=True)
        return bills


class InMemoryTransactionStorage(TransactionStorageInterface):

    def __init__(self):
        self._transactions: InMemoryCollection[Transaction] = InMemoryCollection()

    async def save_transaction(self, transaction: Transaction) -> bool:
        self._transactions.insert(transaction)
        return True

    async def get_transaction(
        self, user_id: str, transaction_id: UUID
    ) -> Optional[Transaction]:
        return self._transactions.get(user_id, transaction_id)

    async def update_transaction(self, transaction: Transaction) -> bool:
        return self._transactions.replace(transaction)

    async def delete_transaction(self, user_id: str, transaction_id: UUID) -> bool:
        return self._transactions.remove(user_id, transaction_id) is not None

    async def list_transactions(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        def matches(t: Transaction) -> bool:
            if type and t.type != type:
                return False
            if category and t.category != category:
                return False
            if date_from and t.date < date_from:
                return False
            if date_to and t.date > date_to:
                return False
            return True

        transactions = self._transactions.select(user_id, matches)
        transactions.sort(key=lambda t: t.date, reverse=True)
        return transactions

    async def find_by_metadata(
        self, user_id: str, match: dict[str, Any]
    ) -> list[Transaction]:
        return self._transactions.select(user_id, lambda t: t.matches_metadata(match))

    async def delete_by_metadata(
        self, user_id: str, match: dict[str, Any]
    ) -> list[Transaction]:
        async with self._transactions.lock:
            doomed = self._transactions.select(
                user_id, lambda t: t.matches_metadata(match)
            )
            for transaction in doomed:
                self._transactions.remove(user_id, transaction.id)
        return doomed


class InMemoryBudgetStorage(BudgetStorageInterface):

    def __init__(self):
        self._budgets: InMemoryCollection[Budget] = InMemoryCollection()

    async def save_budget(self, budget: Budget) -> bool:
        self._budgets.insert(budget)
        return True

    async def get_budget(self, user_id: str, budget_id: UUID) -> Optional[Budget]:
        return self._budgets.get(user_id, budget_id)

    async def update_budget(self, budget: Budget) -> bool:
        return self._budgets.replace(budget)

    async def delete_budget(self, user_id: str, budget_id: UUID) -> bool:
        return self._budgets.remove(user_id, budget_id) is not None

    async def list_budgets(self, user_id: str) -> list[Budget]:
        return self._budgets.select(user_id)

    async def find_matching_budgets(
        self, user_id: str, category: str, on_date: date
    ) -> list[Budget]:
        return self._budgets.select(user_id, lambda b: b.covers(category, on_date))

    async def apply_spent_delta(
        self, user_id: str, budget_id: UUID, delta: Decimal
    ) -> Optional[Budget]:
        async with self._budgets.lock:
            budget = self._budgets.get(user_id, budget_id)
            if budget is None:
                return None
            updated = budget.apply_delta(delta)
            self._budgets.replace(updated)
            return updated


class InMemoryGoalStorage(GoalStorageInterface):

    def __init__(self):
        self._goals: InMemoryCollection[Goal] = InMemoryCollection()

    async def save_goal(self, goal: Goal) -> bool:
        self._goals.insert(goal)
        return True

    async def get_goal(self, user_id: str, goal_id: UUID) -> Optional[Goal]:
        return self._goals.get(user_id, goal_id)

    async def update_goal(self, goal: Goal) -> bool:
        return self._goals.replace(goal)

    async def delete_goal(self, user_id: str, goal_id: UUID) -> bool:
        return self._goals.remove(user_id, goal_id) is not None

    async def list_goals(self, user_id: str) -> list[Goal]:
        return self._goals.select(user_id)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
