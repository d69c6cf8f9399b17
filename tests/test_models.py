"""
Tests for the Pydantic models.

Test strategy:
1. Unit tests for models and pure engine functions
2. Flow tests against in-memory storage (see test_*_flow.py)
3. No network access in tests (the Sheets backend runs on a fake worksheet)
"""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from finance_engine.models.budget import (
    Budget,
    BudgetPeriod,
    BudgetStatus,
    derive_budget_status,
)
from finance_engine.models.goal import Goal, GoalStatus, derive_goal_status
from finance_engine.models.money import to_money
from finance_engine.models.transaction import Transaction, TransactionType

from helpers import TODAY, USER, dinner_request


class TestMoney:
    """Cent rounding."""

    @pytest.mark.parametrize("value, expected", [
        ("1.005", "1.01"),
        ("1.004", "1.00"),
        (2.675, "2.68"),
        (3, "3.00"),
        ("-0.005", "-0.01"),
    ])
    def test_to_money_rounds_half_up(self, value, expected):
        assert to_money(value) == Decimal(expected)


class TestTransactionModel:
    """Ledger entries."""

    def make(self, **overrides):
        data = {
            "user_id": USER,
            "description": "  Coffee  ",
            "amount": "-3.50",
            "category": "Food",
            "date": TODAY,
            "type": TransactionType.EXPENSE,
        }
        data.update(overrides)
        return Transaction.model_validate(data)

    def test_amount_is_positive_and_text_stripped(self):
        transaction = self.make()
        assert transaction.amount == Decimal("3.50")
        assert transaction.description == "Coffee"
        assert transaction.is_expense
        assert not transaction.is_mirrored

    def test_metadata_matching_compares_strings(self):
        transaction = self.make(metadata={"billId": "42", "paymentType": "bill_payment"})
        assert transaction.is_mirrored
        assert transaction.matches_metadata({"billId": 42})
        assert transaction.matches_metadata({})
        assert not transaction.matches_metadata({"billId": "42", "participantId": "B"})


class TestBudgetModel:
    """Spending caps."""

    def make(self, **overrides):
        data = {
            "user_id": USER,
            "name": "Food",
            "amount": Decimal("100"),
            "period": BudgetPeriod.MONTHLY,
            "category": "Food",
            "start_date": date(2025, 1, 1),
            "end_date": date(2025, 1, 31),
        }
        data.update(overrides)
        return Budget.model_validate(data)

    def test_status_derivation(self):
        assert derive_budget_status(Decimal("100"), Decimal("99.99")) == BudgetStatus.ACTIVE
        assert derive_budget_status(Decimal("100"), Decimal("100")) == BudgetStatus.EXCEEDED

    def test_covers_is_inclusive_and_exact(self):
        budget = self.make()
        assert budget.covers("Food", date(2025, 1, 1))
        assert budget.covers("Food", date(2025, 1, 31))
        assert not budget.covers("Food", date(2025, 2, 1))
        assert not budget.covers("food", TODAY)

    def test_uncategorized_budget_covers_nothing(self):
        assert not self.make(category=None).covers("Food", TODAY)

    def test_apply_delta_clamps_and_recomputes(self):
        budget = self.make(spent=Decimal("10"), status=BudgetStatus.COMPLETED)
        assert budget.apply_delta(Decimal("-25")).spent == Decimal("0.00")
        assert budget.apply_delta(Decimal("-25")).status == BudgetStatus.ACTIVE
        assert budget.apply_delta(Decimal("90")).status == BudgetStatus.EXCEEDED

    def test_window_order(self):
        with pytest.raises(PydanticValidationError):
            self.make(end_date=date(2024, 12, 31))

    def test_spent_cannot_be_negative(self):
        with pytest.raises(PydanticValidationError):
            self.make(spent=Decimal("-1"))


class TestGoalModel:
    """Savings goals."""

    def test_status_derivation(self):
        assert derive_goal_status(Decimal("10"), Decimal("10")) == GoalStatus.COMPLETED
        assert derive_goal_status(Decimal("5"), Decimal("10"), GoalStatus.PAUSED) == GoalStatus.PAUSED
        assert derive_goal_status(Decimal("10"), Decimal("10"), GoalStatus.PAUSED) == GoalStatus.COMPLETED
        assert derive_goal_status(Decimal("5"), Decimal("10"), GoalStatus.COMPLETED) == GoalStatus.ACTIVE

    def test_balance_cannot_be_negative(self):
        with pytest.raises(PydanticValidationError):
            Goal(user_id=USER, name="Bike", target_amount=Decimal("300"),
                 category="Savings", current_amount=Decimal("-0.01"))

    def test_contribution_ledger(self):
        goal = Goal(user_id=USER, name="Bike", target_amount=Decimal("300"), category="Savings")
        goal = goal.with_contribution(Decimal("200"), "Birthday")
        goal = goal.with_contribution(Decimal("-50"))
        assert goal.current_amount == Decimal("150.00")
        assert goal.contributed_total == Decimal("150.00")
        assert [c.note for c in goal.contributions] == ["Birthday", None]


class TestNewBillModel:
    """Bill creation requests."""

    def test_participants_are_deduplicated(self):
        request = dinner_request(participants=["A", "B", "A", "C"])
        assert request.participants == ["A", "B", "C"]

    def test_negative_item_rejected(self):
        with pytest.raises(PydanticValidationError):
            dinner_request(items=[{"name": "Refund", "amount": "-5"}])

    def test_cannot_start_settled(self):
        with pytest.raises(PydanticValidationError, match="settled"):
            dinner_request(status="settled")
