"""
Consistency engine components.

Pure calculators (splits, settlement, reporting) and the writers that keep
budgets and mirrored transactions in step with bills and goals.
"""

from finance_engine.engine.budget_sync import BudgetSynchronizer, BudgetSyncResult
from finance_engine.engine.mirroring import MirroredTransactionWriter
from finance_engine.engine.reporting import (
    budget_progress,
    optimal_settlements,
    settlement_summary,
    stats_period_start,
    transaction_stats,
)
from finance_engine.engine.secondary import SecondaryStepRunner
from finance_engine.engine.settlement import (
    apply_payment_status,
    derive_bill_status,
    finalize,
    is_fully_paid,
    parse_payment_state,
)
from finance_engine.engine.splits import (
    allocate_cents,
    compute_split,
    split_by_percentage,
    split_equally,
    split_new_bill,
    validate_custom_split,
)

__all__ = [
    # Calculators
    "allocate_cents",
    "compute_split",
    "split_by_percentage",
    "split_equally",
    "split_new_bill",
    "validate_custom_split",
    # Settlement
    "apply_payment_status",
    "derive_bill_status",
    "finalize",
    "is_fully_paid",
    "parse_payment_state",
    # Writers
    "BudgetSynchronizer",
    "BudgetSyncResult",
    "MirroredTransactionWriter",
    "SecondaryStepRunner",
    # Reports
    "budget_progress",
    "optimal_settlements",
    "settlement_summary",
    "stats_period_start",
    "transaction_stats",
]
