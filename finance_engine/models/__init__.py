"""
Data Models Package

This package contains all Pydantic models used in the finance engine.
All data flowing through the engine must conform to these schemas.
"""

from finance_engine.models.money import CENT, ZERO, Money, to_money
from finance_engine.models.bill import (
    Bill,
    BillItem,
    BillStatus,
    DebtEdge,
    NewBill,
    ParticipantSettlement,
    PaymentState,
    SettlementSummary,
    SettlementTransition,
    SplitMode,
    SplitResult,
)
from finance_engine.models.transaction import (
    CategoryBreakdown,
    MetadataKey,
    NewTransaction,
    PaymentType,
    Transaction,
    TransactionPatch,
    TransactionStats,
    TransactionStatus,
    TransactionType,
)
from finance_engine.models.budget import (
    Budget,
    BudgetPatch,
    BudgetPeriod,
    BudgetProgress,
    BudgetStatus,
    NewBudget,
    derive_budget_status,
)
from finance_engine.models.goal import (
    Contribution,
    Goal,
    GoalPatch,
    GoalPriority,
    GoalStatus,
    NewGoal,
    derive_goal_status,
)
from finance_engine.models.validation import ValidationIssue, ValidationResult
from finance_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Money
    "CENT",
    "ZERO",
    "Money",
    "to_money",
    # Bill models
    "Bill",
    "BillItem",
    "BillStatus",
    "DebtEdge",
    "NewBill",
    "ParticipantSettlement",
    "PaymentState",
    "SettlementSummary",
    "SettlementTransition",
    "SplitMode",
    "SplitResult",
    # Transaction models
    "CategoryBreakdown",
    "MetadataKey",
    "NewTransaction",
    "PaymentType",
    "Transaction",
    "TransactionPatch",
    "TransactionStats",
    "TransactionStatus",
    "TransactionType",
    # Budget models
    "Budget",
    "BudgetPatch",
    "BudgetPeriod",
    "BudgetProgress",
    "BudgetStatus",
    "NewBudget",
    "derive_budget_status",
    # Goal models
    "Contribution",
    "Goal",
    "GoalPatch",
    "GoalPriority",
    "GoalStatus",
    "NewGoal",
    "derive_goal_status",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
