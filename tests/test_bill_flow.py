"""
Tests for the bill orchestrator.

These tests run full flows against in-memory storage:
bill creation -> settlement -> deletion, with the mirrored transactions and
budget spend checked after every step.
"""

import asyncio
from decimal import Decimal

import pytest

from finance_engine.errors import (
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from finance_engine.models.audit import AuditEventType
from finance_engine.models.bill import BillStatus
from finance_engine.models.transaction import TransactionType

from helpers import (
    OTHER_USER,
    TODAY,
    USER,
    BrokenBillStorage,
    EngineHarness,
    FailingBudgetStorage,
    FailingTransactionStorage,
    FlakyTransactionStorage,
    dinner_request,
)


def create(harness, request=None, user_id=USER):
    return asyncio.run(
        harness.bill_flow.create_bill(user_id, request or dinner_request())
    )


def set_status(harness, bill, participant_id, status):
    return asyncio.run(harness.bill_flow.set_participant_payment_status(
        USER, bill.id, participant_id, status
    ))


def settlement_mirrors(harness):
    return [
        t for t in harness.transactions_of()
        if t.metadata.get("paymentType") == "bill_settlement"
    ]


class TestCreateBill:
    """Creation persists, mirrors the payment and feeds budgets."""

    def test_bill_is_saved_with_splits(self, harness):
        bill = create(harness)

        assert bill.total == Decimal("30.00")
        assert bill.splits == {
            "A": Decimal("10.00"),
            "B": Decimal("10.00"),
            "C": Decimal("10.00"),
        }
        assert bill.payment_status == {"A": True}
        assert bill.status == BillStatus.FINALIZED
        assert bill.category == "Bills"
        stored = asyncio.run(harness.bill_flow.get_bill(USER, bill.id))
        assert stored == bill

    def test_payment_is_mirrored_once(self, harness):
        bill = create(harness)

        [mirror] = harness.transactions_of()
        assert mirror.type == TransactionType.EXPENSE
        assert mirror.amount == bill.total
        assert mirror.date == bill.date
        assert mirror.metadata == {"billId": str(bill.id), "paymentType": "bill_payment"}

    def test_payment_feeds_the_bill_category_budget(self, harness):
        budget = harness.add_budget("Bills")
        create(harness)
        assert harness.budget(budget.id).spent == Decimal("30.00")
        assert len(harness.events(AuditEventType.BUDGET_SYNCED)) == 1

    def test_explicit_category(self, harness):
        food = harness.add_budget("Food")
        bill = create(harness, dinner_request(category="Food"))
        assert bill.category == "Food"
        assert harness.budget(food.id).spent == Decimal("30.00")

    def test_accepts_plain_dicts(self, harness):
        bill = create(harness, dinner_request().model_dump(mode="json"))
        assert bill.total == Decimal("30.00")

    def test_all_events_share_a_correlation_id(self, harness):
        harness.add_budget("Bills")
        create(harness)
        correlation_ids = {e.correlation_id for e in harness.audit_storage.events}
        assert len(correlation_ids) == 1
        assert [e.event_type for e in harness.audit_storage.events] == [
            AuditEventType.BILL_CREATED,
            AuditEventType.MIRROR_CREATED,
            AuditEventType.BUDGET_SYNCED,
        ]

    def test_invalid_request_writes_nothing(self, harness):
        """Test a payer who is not a participant is rejected before any write."""
        with pytest.raises(ValidationError):
            create(harness, dinner_request(paid_by="Z"))

        assert asyncio.run(harness.bill_flow.list_bills(USER)) == []
        assert harness.transactions_of() == []
        assert len(harness.events(AuditEventType.VALIDATION_FAILED)) == 1

    def test_custom_split_mismatch_writes_nothing(self, harness):
        with pytest.raises(ValidationError):
            create(harness, dinner_request(
                split_mode="custom",
                custom_splits={"A": "10.00", "B": "10.00"},
            ))
        assert asyncio.run(harness.bill_flow.list_bills(USER)) == []

    def test_primary_write_failure_is_a_storage_error(self):
        harness = EngineHarness(bills=BrokenBillStorage())
        with pytest.raises(StorageError, match="disk on fire"):
            create(harness)
        assert harness.transactions_of() == []

    def test_mirror_failure_keeps_the_bill(self):
        """Test a failed payment mirror is swallowed and marked for reconciliation."""
        harness = EngineHarness(transactions=FailingTransactionStorage())
        budget = harness.add_budget("Bills")

        bill = create(harness)

        assert asyncio.run(harness.bill_flow.get_bill(USER, bill.id)) == bill
        # No mirror, so no spend either
        assert harness.budget(budget.id).spent == Decimal("0.00")
        [marker] = harness.events(AuditEventType.RECONCILIATION_REQUIRED)
        assert marker.details["step"] == "mirror_bill_payment"
        assert marker.details["bill_id"] == str(bill.id)

    def test_budget_failure_keeps_bill_and_mirror(self):
        harness = EngineHarness(budgets=FailingBudgetStorage(fail_all=True))
        budget = harness.add_budget("Bills")

        bill = create(harness)

        assert len(harness.transactions_of()) == 1
        [marker] = harness.events(AuditEventType.RECONCILIATION_REQUIRED)
        assert marker.details["budget_id"] == str(budget.id)
        assert marker.details["delta"] == "30.00"
        assert bill.status == BillStatus.FINALIZED


class TestPaymentStatus:
    """Settlement transitions and their mirrors."""

    def test_status_follows_payments(self, harness):
        """Test B paid keeps finalized, B and C paid settles, C reverting unsettles."""
        bill = create(harness)

        bill = set_status(harness, bill, "B", "paid")
        assert bill.status == BillStatus.FINALIZED

        bill = set_status(harness, bill, "C", "paid")
        assert bill.status == BillStatus.SETTLED

        bill = set_status(harness, bill, "C", "pending")
        assert bill.status == BillStatus.FINALIZED
        assert asyncio.run(harness.bill_flow.get_bill(USER, bill.id)).status == BillStatus.FINALIZED

    def test_paid_mirrors_income_for_the_split(self, harness):
        bill = create(harness)
        set_status(harness, bill, "B", "paid")

        [mirror] = settlement_mirrors(harness)
        assert mirror.type == TransactionType.INCOME
        assert mirror.amount == Decimal("10.00")
        assert mirror.category == "Bill Settlement"
        assert mirror.date == TODAY
        assert mirror.metadata["participantId"] == "B"

    def test_paying_twice_mirrors_once(self, harness):
        bill = create(harness)
        set_status(harness, bill, "B", "paid")
        set_status(harness, bill, "B", "PAID")
        assert len(settlement_mirrors(harness)) == 1
        assert len(harness.events(AuditEventType.PAYMENT_STATUS_UPDATED)) == 1

    def test_reverting_restores_the_transaction_set(self, harness):
        """Test paid then pending leaves exactly the transactions that existed before."""
        bill = create(harness)
        before = {t.id for t in harness.transactions_of()}

        set_status(harness, bill, "B", "paid")
        assert len(harness.transactions_of()) == len(before) + 1

        set_status(harness, bill, "B", "pending")
        assert {t.id for t in harness.transactions_of()} == before

    def test_settlements_do_not_touch_budgets(self, harness):
        settlement = harness.add_budget("Bill Settlement")
        bill = create(harness)
        set_status(harness, bill, "B", "paid")
        assert harness.budget(settlement.id).spent == Decimal("0.00")

    def test_zero_split_mirrors_nothing(self, harness):
        request = dinner_request(items=[
            {"name": "Pizza", "amount": "30.00", "participant_ids": ["A", "B"]},
        ])
        bill = create(harness, request)
        bill = set_status(harness, bill, "C", "paid")
        assert bill.payment_status["C"] is True
        assert settlement_mirrors(harness) == []

    def test_unknown_participant(self, harness):
        bill = create(harness)
        with pytest.raises(ValidationError):
            set_status(harness, bill, "Z", "paid")
        assert settlement_mirrors(harness) == []

    def test_unknown_status_value(self, harness):
        bill = create(harness)
        with pytest.raises(ValidationError):
            set_status(harness, bill, "B", "done")

    def test_payer_cannot_go_pending(self, harness):
        bill = create(harness)
        with pytest.raises(ValidationError):
            set_status(harness, bill, "A", "pending")

    def test_payer_paid_changes_nothing(self, harness):
        bill = create(harness)
        assert set_status(harness, bill, "A", "paid") == bill
        assert settlement_mirrors(harness) == []

    def test_other_users_bill_is_not_found(self, harness):
        bill = create(harness, user_id=OTHER_USER)
        with pytest.raises(NotFoundError):
            set_status(harness, bill, "B", "paid")

    def test_transient_cleanup_failure_is_retried(self):
        """Test removing a settlement mirror survives two failed deletes."""
        storage = FlakyTransactionStorage(failures=2)
        harness = EngineHarness(transactions=storage)
        bill = create(harness)
        set_status(harness, bill, "B", "paid")

        set_status(harness, bill, "B", "pending")

        assert storage.delete_calls == 3
        assert settlement_mirrors(harness) == []
        assert harness.events(AuditEventType.RECONCILIATION_REQUIRED) == []

    def test_settlement_mirror_failure_keeps_the_status(self):
        harness = EngineHarness(transactions=FailingTransactionStorage())
        bill = create(harness)

        bill = set_status(harness, bill, "B", "paid")

        assert bill.payment_status["B"] is True
        assert asyncio.run(harness.bill_flow.get_bill(USER, bill.id)).payment_status["B"] is True
        [marker] = [
            e for e in harness.events(AuditEventType.RECONCILIATION_REQUIRED)
            if e.details["step"] == "mirror_settlement"
        ]
        assert marker.details == {
            "step": "mirror_settlement",
            "bill_id": str(bill.id),
            "participant_id": "B",
            "amount": "10.00",
        }


class TestSettleAndFinalize:
    """Whole-bill operations."""

    def test_settle_bill_pays_everyone(self, harness):
        bill = create(harness)
        bill = asyncio.run(harness.bill_flow.settle_bill(USER, bill.id))
        assert bill.status == BillStatus.SETTLED
        assert len(settlement_mirrors(harness)) == 2

    def test_settle_bill_twice_mirrors_nothing_new(self, harness):
        bill = create(harness)
        asyncio.run(harness.bill_flow.settle_bill(USER, bill.id))
        bill = asyncio.run(harness.bill_flow.settle_bill(USER, bill.id))
        assert bill.status == BillStatus.SETTLED
        assert len(settlement_mirrors(harness)) == 2

    def test_draft_bill_is_finalized(self, harness):
        bill = create(harness, dinner_request(status="draft"))
        assert bill.status == BillStatus.DRAFT

        bill = asyncio.run(harness.bill_flow.finalize_bill(USER, bill.id))

        assert bill.status == BillStatus.FINALIZED
        assert len(harness.events(AuditEventType.BILL_FINALIZED)) == 1
        with pytest.raises(ConflictError):
            asyncio.run(harness.bill_flow.finalize_bill(USER, bill.id))


class TestDeleteBill:
    """Deletion cascades to mirrors and budgets."""

    def test_removes_every_mirror_and_reverses_spend(self, harness):
        budget = harness.add_budget("Bills")
        bill = create(harness)
        keep = create(harness, dinner_request(description="Other dinner"))
        set_status(harness, bill, "B", "paid")
        assert harness.budget(budget.id).spent == Decimal("60.00")

        asyncio.run(harness.bill_flow.delete_bill(USER, bill.id))

        with pytest.raises(NotFoundError):
            asyncio.run(harness.bill_flow.get_bill(USER, bill.id))
        remaining = harness.transactions_of()
        assert [t.metadata["billId"] for t in remaining] == [str(keep.id)]
        assert harness.budget(budget.id).spent == Decimal("30.00")

    def test_missing_bill(self, harness):
        bill = create(harness)
        asyncio.run(harness.bill_flow.delete_bill(USER, bill.id))
        with pytest.raises(NotFoundError):
            asyncio.run(harness.bill_flow.delete_bill(USER, bill.id))

    def test_cleanup_failure_leaves_a_marker(self):
        """Test an exhausted mirror cleanup still deletes the bill and leaves spend alone."""
        storage = FlakyTransactionStorage(failures=10)
        harness = EngineHarness(transactions=storage)
        budget = harness.add_budget("Bills")
        bill = create(harness)

        asyncio.run(harness.bill_flow.delete_bill(USER, bill.id))

        assert asyncio.run(harness.bill_flow.list_bills(USER)) == []
        assert storage.delete_calls == 3
        assert len(harness.transactions_of()) == 1
        assert harness.budget(budget.id).spent == Decimal("30.00")
        [marker] = harness.events(AuditEventType.RECONCILIATION_REQUIRED)
        assert marker.details == {"step": "remove_bill_mirrors", "bill_id": str(bill.id)}


class TestBillReports:
    """Read-only views through the orchestrator."""

    def test_settlement_summary(self, harness):
        bill = create(harness)
        set_status(harness, bill, "B", "paid")
        summary = asyncio.run(harness.bill_flow.get_settlement_summary(USER, bill.id))
        assert summary.settlement_percentage == 50
        assert summary.total_remaining == Decimal("10.00")

    def test_optimal_settlements(self, harness):
        bill = create(harness)
        set_status(harness, bill, "B", "paid")
        edges = asyncio.run(harness.bill_flow.get_optimal_settlements(USER, bill.id))
        assert [e.model_dump(by_alias=True, mode="json") for e in edges] == [
            {"from": "C", "to": "A", "amount": "10.00"},
        ]

    def test_compute_split_preview(self, harness):
        result = harness.bill_flow.compute_split(
            items=[{"name": "Cab", "amount": "10", "participant_ids": ["A", "B", "C"]}],
            tax_percentage="0",
            tip=None,
            participants=["A", "B", "C", "A"],
        )
        assert result.splits == {
            "A": Decimal("3.34"),
            "B": Decimal("3.33"),
            "C": Decimal("3.33"),
        }
        assert harness.transactions_of() == []
