"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface per aggregate.
This allows us to:
1. Swap Google Sheets for a real document database later
2. Use in-memory storage for testing
3. Keep the consistency logic decoupled from storage implementation

Every read and write is scoped by the owner's user id. A record that
belongs to someone else is indistinguishable from a missing one.

The interface is intentionally simple - we're not building a full ORM.
Just the operations the engine needs.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finance_engine.models.audit import AuditEvent
from finance_engine.models.bill import Bill
from finance_engine.models.budget import Budget
from finance_engine.models.goal import Goal
from finance_engine.models.transaction import Transaction, TransactionType


class BillStorageInterface(ABC):
    """Abstract interface for bill storage operations."""

    @abstractmethod
    async def save_bill(self, bill: Bill) -> bool:
        """
        Save a new bill.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_bill(self, user_id: str, bill_id: UUID) -> Optional[Bill]:
        """Retrieve a bill owned by ``user_id``; None if missing."""
        pass

    @abstractmethod
    async def update_bill(self, bill: Bill) -> bool:
        """
        Replace an existing bill.

        Returns:
            False if the bill no longer exists
        """
        pass

    @abstractmethod
    async def delete_bill(self, user_id: str, bill_id: UUID) -> bool:
        """Delete a bill. Returns False if nothing was deleted."""
        pass

    @abstractmethod
    async def list_bills(self, user_id: str) -> list[Bill]:
        """All bills owned by ``user_id``, newest first."""
        pass


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction storage.

    Besides plain CRUD it supports metadata lookups, which is how mirrored
    transactions are found again when their origin is reversed.
    """

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> bool:
        pass

    @abstractmethod
    async def get_transaction(
        self, user_id: str, transaction_id: UUID
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> bool:
        pass

    @abstractmethod
    async def delete_transaction(self, user_id: str, transaction_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters (dates are inclusive).

        Returns:
            Matching transactions, newest first
        """
        pass

    @abstractmethod
    async def find_by_metadata(
        self, user_id: str, match: dict[str, Any]
    ) -> list[Transaction]:
        """Transactions whose metadata contains every key/value in ``match``."""
        pass

    @abstractmethod
    async def delete_by_metadata(
        self, user_id: str, match: dict[str, Any]
    ) -> list[Transaction]:
        """
        Delete every transaction matching ``match``.

        Idempotent: zero matches is success.

        Returns:
            The deleted transactions
        """
        pass


class BudgetStorageInterface(ABC):
    """Abstract interface for budget storage."""

    @abstractmethod
    async def save_budget(self, budget: Budget) -> bool:
        pass

    @abstractmethod
    async def get_budget(self, user_id: str, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget) -> bool:
        pass

    @abstractmethod
    async def delete_budget(self, user_id: str, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_budgets(self, user_id: str) -> list[Budget]:
        pass

    @abstractmethod
    async def find_matching_budgets(
        self, user_id: str, category: str, on_date: date
    ) -> list[Budget]:
        """
        Budgets with exactly this category whose window contains ``on_date``
        (inclusive on both ends).
        """
        pass

    @abstractmethod
    async def apply_spent_delta(
        self, user_id: str, budget_id: UUID, delta: Decimal
    ) -> Optional[Budget]:
        """
        Move ``spent`` by ``delta`` (clamped at zero) and recompute status.

        Implementations should perform the read-modify-write as one
        storage-level operation where the backend allows it.

        Returns:
            The updated budget, or None if it no longer exists
        """
        pass


class GoalStorageInterface(ABC):
    """Abstract interface for goal storage."""

    @abstractmethod
    async def save_goal(self, goal: Goal) -> bool:
        pass

    @abstractmethod
    async def get_goal(self, user_id: str, goal_id: UUID) -> Optional[Goal]:
        pass

    @abstractmethod
    async def update_goal(self, goal: Goal) -> bool:
        pass

    @abstractmethod
    async def delete_goal(self, user_id: str, goal_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_goals(self, user_id: str) -> list[Goal]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one orchestrator call, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass
