"""
Settlement/Debt Reporter

Read-only views over bills, transactions and budgets. Nothing here writes.

NOTE: ``optimal_settlements`` is a direct projection (each unpaid
participant owes the payer their split). It does NOT net debts across
participants or across bills.
"""

import calendar
from collections import defaultdict
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from finance_engine.config import get_settings
from finance_engine.models.bill import (
    Bill,
    DebtEdge,
    ParticipantSettlement,
    SettlementSummary,
)
from finance_engine.models.budget import Budget, BudgetProgress
from finance_engine.models.money import ZERO, to_money
from finance_engine.models.transaction import (
    CategoryBreakdown,
    Transaction,
    TransactionStats,
    TransactionType,
)


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= ZERO:
        return Decimal("0")
    return part / whole * Decimal("100")


# =============================================================================
# BILLS
# =============================================================================

def settlement_summary(bill: Bill) -> SettlementSummary:
    """
    Who still owes what on one bill.

    Lists every non-payer participant whose split is positive. The
    percentage is 0 when nobody owes anything.
    """
    participants = []
    for participant_id in bill.participants:
        owed = bill.owed_by(participant_id)
        if participant_id == bill.paid_by or owed <= ZERO:
            continue
        paid = bill.is_paid(participant_id)
        participants.append(ParticipantSettlement(
            participant_id=participant_id,
            owed_amount=owed,
            is_paid=paid,
            remaining_amount=ZERO if paid else owed,
        ))

    total_owed = sum((p.owed_amount for p in participants), ZERO)
    total_paid = sum((p.owed_amount for p in participants if p.is_paid), ZERO)
    total_remaining = total_owed - total_paid

    percentage = _percent(total_paid, total_owed).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )

    return SettlementSummary(
        bill_id=bill.id,
        participants=participants,
        total_owed=total_owed,
        total_paid=total_paid,
        total_remaining=total_remaining,
        is_fully_settled=total_remaining == ZERO and total_owed > ZERO,
        settlement_percentage=int(percentage),
    )


def optimal_settlements(bill: Bill) -> list[DebtEdge]:
    """One edge per unpaid participant with a positive split, pointing at the payer."""
    return [
        DebtEdge(
            from_participant=participant_id,
            to_participant=bill.paid_by,
            amount=bill.owed_by(participant_id),
        )
        for participant_id in bill.participants
        if participant_id != bill.paid_by
        and bill.owed_by(participant_id) > ZERO
        and not bill.is_paid(participant_id)
    ]


# =============================================================================
# TRANSACTIONS
# =============================================================================

STATS_PERIODS = ("week", "month", "year")


def stats_period_start(period: str, today: date) -> date:
    """
    First day of a trailing stats window ending on ``today``.

    ``week`` is the last 7 days; ``month`` and ``year`` go back to the same
    calendar day, clamped to the end of a shorter month (Mar 31 -> Feb 28).
    """
    if period == "week":
        return today - timedelta(days=7)
    if period == "month":
        year, month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)
    elif period == "year":
        year, month = today.year - 1, today.month
    else:
        raise ValueError(f"Unknown stats period {period!r}; expected one of {STATS_PERIODS}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(today.day, last_day))


def transaction_stats(transactions: list[Transaction]) -> TransactionStats:
    """Income and expense totals, plus where the expenses went."""
    total_income = ZERO
    total_expenses = ZERO
    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)

    for transaction in transactions:
        if transaction.type == TransactionType.INCOME:
            total_income += transaction.amount
        else:
            total_expenses += transaction.amount
            by_category[transaction.category] += transaction.amount

    breakdown = [
        CategoryBreakdown(
            category=category,
            amount=amount,
            percentage=round(float(_percent(amount, total_expenses)), 2),
        )
        for category, amount in sorted(
            by_category.items(), key=lambda kv: (-kv[1], kv[0])
        )
    ]

    return TransactionStats(
        total_income=total_income,
        total_expenses=total_expenses,
        net_amount=total_income - total_expenses,
        category_breakdown=breakdown,
    )


# =============================================================================
# BUDGETS
# =============================================================================

def budget_progress(
    budget: Budget,
    today: date,
    on_track_threshold: Optional[float] = None,
) -> BudgetProgress:
    """
    How far through its cap a budget is, and where it is heading.

    ``projected_spend`` extrapolates the daily spend so far over the whole
    window. Before the window starts nothing has been spent per day, so the
    projection is the current spend.
    """
    if on_track_threshold is None:
        on_track_threshold = get_settings().app.budget_on_track_threshold

    progress = min(float(_percent(budget.spent, budget.amount)), 100.0)
    if budget.amount <= ZERO and budget.spent > ZERO:
        progress = 100.0

    days_total = (budget.end_date - budget.start_date).days + 1
    days_left = max((budget.end_date - today).days, 0)
    days_elapsed = min(max((today - budget.start_date).days + 1, 0), days_total)

    if days_elapsed > 0:
        projected = budget.spent / days_elapsed * days_total
    else:
        projected = budget.spent

    return BudgetProgress(
        budget=budget,
        progress=round(progress, 2),
        remaining=max(budget.amount - budget.spent, ZERO),
        days_left=days_left,
        on_track=progress <= on_track_threshold,
        projected_spend=to_money(projected),
    )
