"""
Mirrored-Transaction Writer

Writes the ledger entries that reflect a bill or goal event as cash flow,
and removes them again when the event is reversed.

Every mirror is tagged in ``metadata`` with its origin (``billId`` or
``goalId``), the ``paymentType`` and, for settlements, the
``participantId``. Removal is always by metadata match, never by id, so it
works even if the caller never saw the mirror's id.

CRITICAL: Creation is NOT idempotent. Calling ``mirror_*`` twice for the
same logical event produces two transactions; callers must invoke it at
most once per event. Removal IS idempotent: matching nothing is success.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional

import structlog

from finance_engine.config import get_settings
from finance_engine.models.bill import Bill
from finance_engine.models.goal import Goal
from finance_engine.models.money import ZERO, to_money
from finance_engine.models.transaction import (
    MetadataKey,
    PaymentType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from finance_engine.services.storage import TransactionStorageInterface


logger = structlog.get_logger("finance_engine.mirroring")


def bill_mirror_match(bill: Bill) -> dict:
    """Matches every mirror of a bill: the payment and all settlements."""
    return {MetadataKey.BILL_ID: str(bill.id)}


def settlement_match(bill: Bill, participant_id: str) -> dict:
    return {
        MetadataKey.BILL_ID: str(bill.id),
        MetadataKey.PARTICIPANT_ID: participant_id,
        MetadataKey.PAYMENT_TYPE: PaymentType.BILL_SETTLEMENT.value,
    }


class MirroredTransactionWriter:
    """Creates and removes mirrored transactions."""

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        settlement_category: Optional[str] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._transactions = transaction_storage
        self._settlement_category = (
            settlement_category or get_settings().app.settlement_category
        )
        self._today = today or date.today

    async def _create(
        self,
        user_id: str,
        type: TransactionType,
        amount: Decimal,
        description: str,
        category: str,
        on_date: date,
        metadata: dict,
    ) -> Transaction:
        transaction = Transaction(
            user_id=user_id,
            description=description[:500],
            amount=amount,
            category=category,
            date=on_date,
            type=type,
            status=TransactionStatus.COMPLETED,
            metadata=metadata,
        )
        await self._transactions.save_transaction(transaction)

        logger.info(
            "mirror_created",
            user_id=user_id,
            transaction_id=str(transaction.id),
            type=type.value,
            amount=str(transaction.amount),
            payment_type=metadata.get(MetadataKey.PAYMENT_TYPE),
        )
        return transaction

    async def _remove(self, user_id: str, match: dict) -> list[Transaction]:
        removed = await self._transactions.delete_by_metadata(user_id, match)
        logger.info(
            "mirrors_removed",
            user_id=user_id,
            match=match,
            removed=len(removed),
        )
        return removed

    # =========================================================================
    # BILLS
    # =========================================================================

    async def mirror_bill_payment(self, bill: Bill) -> Transaction:
        """The payer's outlay: one expense for the whole bill total."""
        return await self._create(
            user_id=bill.user_id,
            type=TransactionType.EXPENSE,
            amount=bill.total,
            description=f"Bill payment: {bill.description}",
            category=bill.category,
            on_date=bill.date,
            metadata={
                MetadataKey.BILL_ID: str(bill.id),
                MetadataKey.PAYMENT_TYPE: PaymentType.BILL_PAYMENT.value,
            },
        )

    async def mirror_settlement(
        self,
        bill: Bill,
        participant_id: str,
    ) -> Optional[Transaction]:
        """
        A participant paying their split back to the bill owner.

        Nothing is written when the participant owes nothing.
        """
        amount = bill.owed_by(participant_id)
        if amount <= ZERO:
            return None

        return await self._create(
            user_id=bill.user_id,
            type=TransactionType.INCOME,
            amount=amount,
            description=f"Payment received from {participant_id}: {bill.description}",
            category=self._settlement_category,
            on_date=self._today(),
            metadata=settlement_match(bill, participant_id),
        )

    async def remove_settlement(
        self,
        bill: Bill,
        participant_id: str,
    ) -> list[Transaction]:
        return await self._remove(bill.user_id, settlement_match(bill, participant_id))

    async def remove_bill_mirrors(self, bill: Bill) -> list[Transaction]:
        """
        Delete every transaction mirrored from a bill.

        Returns what was deleted, so the caller can reverse the budget effect
        of the payment expense.
        """
        return await self._remove(bill.user_id, bill_mirror_match(bill))

    # =========================================================================
    # GOALS
    # =========================================================================

    async def mirror_goal_contribution(
        self,
        goal: Goal,
        amount: Decimal,
        note: Optional[str] = None,
    ) -> Transaction:
        """Money moved into savings leaves the spendable balance: an expense."""
        return await self._create(
            user_id=goal.user_id,
            type=TransactionType.EXPENSE,
            amount=abs(to_money(amount)),
            description=note or f"Contribution to goal: {goal.name}",
            category=goal.category,
            on_date=self._today(),
            metadata={
                MetadataKey.GOAL_ID: str(goal.id),
                MetadataKey.PAYMENT_TYPE: PaymentType.GOAL_CONTRIBUTION.value,
            },
        )

    async def mirror_goal_withdrawal(
        self,
        goal: Goal,
        amount: Decimal,
        note: Optional[str] = None,
    ) -> Transaction:
        """Money taken back out of savings: an income."""
        return await self._create(
            user_id=goal.user_id,
            type=TransactionType.INCOME,
            amount=abs(to_money(amount)),
            description=note or f"Withdrawal from goal: {goal.name}",
            category=goal.category,
            on_date=self._today(),
            metadata={
                MetadataKey.GOAL_ID: str(goal.id),
                MetadataKey.PAYMENT_TYPE: PaymentType.GOAL_WITHDRAWAL.value,
            },
        )
