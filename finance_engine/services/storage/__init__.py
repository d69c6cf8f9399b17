"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The in-memory backend is the default; Google Sheets is the persistent one.
Both sit behind the same interfaces, so the engine never knows which is used.
"""

from finance_engine.services.storage.interface import (
    AuditStorageInterface,
    BillStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    TransactionStorageInterface,
)
from finance_engine.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBillStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryTransactionStorage,
)
from finance_engine.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsBillStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsGoalStorage,
    GoogleSheetsTransactionStorage,
)

__all__ = [
    # Interfaces
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
