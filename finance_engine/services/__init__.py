"""Services package."""

from finance_engine.services.storage import (
    AuditStorageInterface,
    BillStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBillStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsGoalStorage,
    GoogleSheetsTransactionStorage,
    InMemoryAuditStorage,
    InMemoryBillStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryTransactionStorage,
    TransactionStorageInterface,
)

__all__ = [
    # Storage interfaces
    "AuditStorageInterface",
    "BillStorageInterface",
    "BudgetStorageInterface",
    "GoalStorageInterface",
    "TransactionStorageInterface",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBillStorage",
    "InMemoryBudgetStorage",
    "InMemoryGoalStorage",
    "InMemoryTransactionStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBillStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsGoalStorage",
    "GoogleSheetsTransactionStorage",
]
