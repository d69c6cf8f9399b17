"""
Tests for the budget synchronizer.
"""

import asyncio
from datetime import date
from decimal import Decimal

from finance_engine.engine.budget_sync import BudgetSynchronizer
from finance_engine.models.budget import BudgetStatus
from finance_engine.models.transaction import Transaction, TransactionType

from helpers import OTHER_USER, USER, EngineHarness, FailingBudgetStorage


JAN_15 = date(2025, 1, 15)


def apply(harness: EngineHarness, category, on_date, delta, user_id=USER):
    synchronizer = BudgetSynchronizer(harness.budgets)
    return asyncio.run(synchronizer.apply_delta(user_id, category, on_date, delta))


class TestApplyDelta:
    """Signed deltas against category + date windows."""

    def test_food_budget_goes_over_and_back(self, harness):
        """Test 80 + 30 exceeds a 100 cap, and -30 brings it back to active."""
        budget = harness.add_budget("Food", amount="100", spent="80")

        result = apply(harness, "Food", JAN_15, Decimal("30"))
        assert result.ok
        assert [b.id for b in result.updated] == [budget.id]
        stored = harness.budget(budget.id)
        assert stored.spent == Decimal("110.00")
        assert stored.status == BudgetStatus.EXCEEDED

        apply(harness, "Food", JAN_15, Decimal("-30"))
        stored = harness.budget(budget.id)
        assert stored.spent == Decimal("80.00")
        assert stored.status == BudgetStatus.ACTIVE

    def test_reaching_the_cap_exactly_is_exceeded(self, harness):
        budget = harness.add_budget("Food", amount="100", spent="90")
        apply(harness, "Food", JAN_15, Decimal("10"))
        assert harness.budget(budget.id).status == BudgetStatus.EXCEEDED

    def test_spent_never_goes_negative(self, harness):
        """Test a large negative delta clamps spent at zero."""
        budget = harness.add_budget("Food", spent="20")
        apply(harness, "Food", JAN_15, Decimal("-50"))
        assert harness.budget(budget.id).spent == Decimal("0.00")

    def test_window_is_inclusive(self, harness):
        """Test dates on the first and last day of the window both count."""
        budget = harness.add_budget("Food")
        apply(harness, "Food", date(2025, 1, 1), Decimal("5"))
        apply(harness, "Food", date(2025, 1, 31), Decimal("5"))
        apply(harness, "Food", date(2025, 2, 1), Decimal("5"))
        assert harness.budget(budget.id).spent == Decimal("10.00")

    def test_category_must_match_exactly(self, harness):
        budget = harness.add_budget("Food")
        result = apply(harness, "food", JAN_15, Decimal("5"))
        assert result.skipped
        assert harness.budget(budget.id).spent == Decimal("0.00")

    def test_overlapping_budgets_all_receive_the_delta(self, harness):
        """Test every budget covering the date is updated."""
        monthly = harness.add_budget("Food")
        weekly = harness.add_budget(
            "Food", start=date(2025, 1, 13), end=date(2025, 1, 19)
        )
        result = apply(harness, "Food", JAN_15, Decimal("12.50"))
        assert len(result.updated) == 2
        assert harness.budget(monthly.id).spent == Decimal("12.50")
        assert harness.budget(weekly.id).spent == Decimal("12.50")

    def test_completed_status_is_recomputed(self, harness):
        """Test a completed budget moves back to active on its next delta."""
        budget = harness.add_budget("Food", status=BudgetStatus.COMPLETED)
        apply(harness, "Food", JAN_15, Decimal("1"))
        assert harness.budget(budget.id).status == BudgetStatus.ACTIVE

    def test_other_users_are_untouched(self, harness):
        theirs = harness.add_budget("Food", user_id=OTHER_USER)
        apply(harness, "Food", JAN_15, Decimal("10"))
        assert harness.budget(theirs.id, OTHER_USER).spent == Decimal("0.00")


class TestNoOps:
    """Inputs that must not touch any budget."""

    def test_zero_delta(self, harness):
        budget = harness.add_budget("Food")
        assert apply(harness, "Food", JAN_15, Decimal("0")).skipped
        assert harness.budget(budget.id).updated_at == budget.updated_at

    def test_missing_category(self, harness):
        harness.add_budget("Food")
        assert apply(harness, None, JAN_15, Decimal("5")).skipped
        assert apply(harness, "", JAN_15, Decimal("5")).skipped

    def test_missing_date(self, harness):
        harness.add_budget("Food")
        assert apply(harness, "Food", None, Decimal("5")).skipped

    def test_no_delta(self, harness):
        harness.add_budget("Food")
        assert apply(harness, "Food", JAN_15, None).skipped


class TestFailureIsolation:
    """A failing budget write does not stop the others."""

    def test_one_failure_does_not_block_the_rest(self):
        storage = FailingBudgetStorage()
        harness = EngineHarness(budgets=storage)
        broken = harness.add_budget("Food")
        healthy = harness.add_budget("Food", start=date(2025, 1, 10), end=date(2025, 1, 20))
        storage.fail_ids = {broken.id}

        result = apply(harness, "Food", JAN_15, Decimal("10"))

        assert not result.ok
        assert list(result.failed) == [broken.id]
        assert [b.id for b in result.updated] == [healthy.id]
        assert harness.budget(healthy.id).spent == Decimal("10.00")
        assert harness.budget(broken.id).spent == Decimal("0.00")


class TestRecomputeSpent:
    """Rebuilding spent from the transaction history."""

    def test_sums_covered_expenses_only(self, harness):
        budget = harness.add_budget("Food", spent="999")

        def tx(amount, category="Food", type=TransactionType.EXPENSE, on=JAN_15, user=USER):
            return Transaction(
                user_id=user,
                type=type,
                amount=Decimal(amount),
                category=category,
                description="x",
                date=on,
            )

        transactions = [
            tx("10"),
            tx("15.50"),
            tx("100", type=TransactionType.INCOME),
            tx("7", category="Fun"),
            tx("3", on=date(2025, 2, 1)),
            tx("4", user=OTHER_USER),
        ]
        rebuilt = BudgetSynchronizer.recompute_spent(budget, transactions)
        assert rebuilt.spent == Decimal("25.50")
        assert rebuilt.status == BudgetStatus.ACTIVE
