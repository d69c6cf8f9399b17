"""
Google Sheets backend.

The spreadsheet is used as a small document store with one worksheet per
collection. A row carries the document id, owner, timestamps and the whole
document as JSON, so adding a model field needs no sheet migration, and the
owner can still open the spreadsheet and read their data.

Limits: every query loads the worksheet and filters in Python, and there
are no atomic increments, so ``apply_spent_delta`` is read-then-write and two
concurrent deltas on one budget can race. Fine for one household.
"""

import json
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Generic, Optional, TypeVar
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from finance_engine.config import get_settings
from finance_engine.errors import ConnectionError, StorageError
from finance_engine.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_engine.models.bill import Bill
from finance_engine.models.budget import Budget
from finance_engine.models.goal import Goal
from finance_engine.models.transaction import Transaction, TransactionType
from finance_engine.services.storage.interface import (
    AuditStorageInterface,
    BillStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    TransactionStorageInterface,
)


# Column layout shared by every document sheet
DOCUMENT_COLUMNS = [
    "id",
    "user_id",
    "created_at",
    "updated_at",
    "document_json",
]

# The audit trail is stored flat so it can be filtered by column in the UI
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "user_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

ModelT = TypeVar("ModelT", bound=BaseModel)


class GoogleSheetsClient:
    """
    Lazily authenticated handle on the configured spreadsheet.

    Connecting is retried with backoff; worksheets are created with their
    header row on first use.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"No service account key at {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Could not authorize with Google: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Open the spreadsheet named by GOOGLE_SHEETS_SPREADSHEET_ID once."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"No spreadsheet with id {self._settings.spreadsheet_id} is shared with the service account"
                )
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    @property
    def settings(self):
        return self._settings


class SheetsDocumentCollection(Generic[ModelT]):
    """
    One worksheet of JSON documents.

    Rows are located by scanning the id column; the sheet is small enough
    for that to be fine.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        sheet_name: str,
        model: type[ModelT],
    ):
        self._client = client
        self._sheet_name = sheet_name
        self._model = model

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_sheet(self._sheet_name, DOCUMENT_COLUMNS)

    def _to_row(self, document: ModelT) -> list:
        return [
            str(document.id),
            document.user_id,
            document.created_at.isoformat(),
            document.updated_at.isoformat(),
            document.model_dump_json(),
        ]

    def _from_row(self, row: list) -> ModelT:
        return self._model.model_validate_json(row[4])

    def _rows(self) -> list[list]:
        # Skip header
        return self._sheet().get_all_values()[1:]

    def insert(self, document: ModelT) -> None:
        # Single attempt: an append whose response is lost may still have landed
        try:
            self._sheet().append_row(self._to_row(document), value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to save {self._sheet_name} document: {e}")

    def get(self, user_id: str, document_id: UUID) -> Optional[ModelT]:
        try:
            for row in self._rows():
                if len(row) >= 5 and row[0] == str(document_id) and row[1] == user_id:
                    return self._from_row(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to read {self._sheet_name} document: {e}")

    def replace(self, document: ModelT) -> bool:
        try:
            sheet = self._sheet()
            all_rows = sheet.get_all_values()

            # Start from 2 (row 1 is header)
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(document.id) and row[1] == document.user_id:
                    sheet.update(
                        range_name=f"A{idx}:E{idx}",
                        values=[self._to_row(document)],
                        raw=True,
                    )
                    return True
            return False
        except Exception as e:
            raise StorageError(f"Failed to update {self._sheet_name} document: {e}")

    def remove(self, user_id: str, document_id: UUID) -> Optional[ModelT]:
        try:
            sheet = self._sheet()
            all_rows = sheet.get_all_values()

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(document_id) and row[1] == user_id:
                    document = self._from_row(row)
                    sheet.delete_rows(idx)
                    return document
            return None
        except Exception as e:
            raise StorageError(f"Failed to delete {self._sheet_name} document: {e}")

    def select(
        self,
        user_id: str,
        predicate: Callable[[ModelT], bool] = lambda _: True,
    ) -> list[ModelT]:
        try:
            documents = []
            for row in self._rows():
                if not row or not row[0] or row[1] != user_id:
                    continue
                document = self._from_row(row)
                if predicate(document):
                    documents.append(document)
            return documents
        except Exception as e:
            raise StorageError(f"Failed to list {self._sheet_name} documents: {e}")


class GoogleSheetsBillStorage(BillStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        self._bills = SheetsDocumentCollection(
            client, client.settings.bills_sheet_name, Bill
        )

    async def save_bill(self, bill: Bill) -> bool:
        self._bills.insert(bill)
        return True

    async def get_bill(self, user_id: str, bill_id: UUID) -> Optional[Bill]:
        return self._bills.get(user_id, bill_id)

    async def update_bill(self, bill: Bill) -> bool:
        return self._bills.replace(bill)

    async def delete_bill(self, user_id: str, bill_id: UUID) -> bool:
        return self._bills.remove(user_id, bill_id) is not None

    async def list_bills(self, user_id: str) -> list[Bill]:
        bills = self._bills.select(user_id)
        bills.sort(key=lambda b: b.date, reverse=True)
        return bills


class GoogleSheetsTransactionStorage(TransactionStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        self._transactions = SheetsDocumentCollection(
            client, client.settings.transactions_sheet_name, Transaction
        )

    async def save_transaction(self, transaction: Transaction) -> bool:
        self._transactions.insert(transaction)
        return True

    async def get_transaction(
        self, user_id: str, transaction_id: UUID
    ) -> Optional[Transaction]:
        return self._transactions.get(user_id, transaction_id)

    async def update_transaction(self, transaction: Transaction) -> bool:
        return self._transactions.replace(transaction)

    async def delete_transaction(self, user_id: str, transaction_id: UUID) -> bool:
        return self._transactions.remove(user_id, transaction_id) is not None

    async def list_transactions(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        transactions = self._transactions.select(
            user_id,
            lambda t: (
                (type is None or t.type == type)
                and (category is None or t.category == category)
                and (date_from is None or t.date >= date_from)
                and (date_to is None or t.date <= date_to)
            ),
        )
        transactions.sort(key=lambda t: t.date, reverse=True)
        return transactions

    async def find_by_metadata(
        self, user_id: str, match: dict[str, Any]
    ) -> list[Transaction]:
        return self._transactions.select(user_id, lambda t: t.matches_metadata(match))

    async def delete_by_metadata(
        self, user_id: str, match: dict[str, Any]
    ) -> list[Transaction]:
        deleted = []
        for transaction in self._transactions.select(
            user_id, lambda t: t.matches_metadata(match)
        ):
            removed = self._transactions.remove(user_id, transaction.id)
            if removed is not None:
                deleted.append(removed)
        return deleted


class GoogleSheetsBudgetStorage(BudgetStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        self._budgets = SheetsDocumentCollection(
            client, client.settings.budgets_sheet_name, Budget
        )

    async def save_budget(self, budget: Budget) -> bool:
        self._budgets.insert(budget)
        return True

    async def get_budget(self, user_id: str, budget_id: UUID) -> Optional[Budget]:
        return self._budgets.get(user_id, budget_id)

    async def update_budget(self, budget: Budget) -> bool:
        return self._budgets.replace(budget)

    async def delete_budget(self, user_id: str, budget_id: UUID) -> bool:
        return self._budgets.remove(user_id, budget_id) is not None

    async def list_budgets(self, user_id: str) -> list[Budget]:
        return self._budgets.select(user_id)

    async def find_matching_budgets(
        self, user_id: str, category: str, on_date: date
    ) -> list[Budget]:
        return self._budgets.select(user_id, lambda b: b.covers(category, on_date))

    async def apply_spent_delta(
        self, user_id: str, budget_id: UUID, delta: Decimal
    ) -> Optional[Budget]:
        budget = self._budgets.get(user_id, budget_id)
        if budget is None:
            return None
        updated = budget.apply_delta(delta)
        if not self._budgets.replace(updated):
            return None
        return updated


class GoogleSheetsGoalStorage(GoalStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        self._goals = SheetsDocumentCollection(
            client, client.settings.goals_sheet_name, Goal
        )

    async def save_goal(self, goal: Goal) -> bool:
        self._goals.insert(goal)
        return True

    async def get_goal(self, user_id: str, goal_id: UUID) -> Optional[Goal]:
        return self._goals.get(user_id, goal_id)

    async def update_goal(self, goal: Goal) -> bool:
        return self._goals.replace(goal)

    async def delete_goal(self, user_id: str, goal_id: UUID) -> bool:
        return self._goals.remove(user_id, goal_id) is not None

    async def list_goals(self, user_id: str) -> list[Goal]:
        return self._goals.select(user_id)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """Audit trail on its own worksheet; rows are only ever appended."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_sheet(
            self._client.settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )

    @staticmethod
    def _parse_row(row: list) -> AuditEvent:
        # Sheets drops trailing empty cells
        cells = dict(zip(AUDIT_COLUMNS, list(row) + [""] * (len(AUDIT_COLUMNS) - len(row))))

        def optional_uuid(name: str) -> Optional[UUID]:
            return UUID(cells[name]) if cells[name] else None

        return AuditEvent(
            event_id=UUID(cells["event_id"]),
            timestamp=cells["timestamp"],
            event_type=AuditEventType(cells["event_type"]),
            severity=AuditSeverity(cells["severity"]),
            entity_type=cells["entity_type"] or None,
            entity_id=optional_uuid("entity_id"),
            user_id=cells["user_id"] or None,
            correlation_id=optional_uuid("correlation_id"),
            description=cells["description"],
            details=json.loads(cells["details_json"]) if cells["details_json"] else {},
            error_message=cells["error_message"] or None,
        )

    def _matching(self, predicate: Callable[[AuditEvent], bool]) -> list[AuditEvent]:
        try:
            rows = self._sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Could not read the audit trail: {e}")
        found = [self._parse_row(row) for row in rows if row and row[0]]
        return sorted((e for e in found if predicate(e)), key=lambda e: e.timestamp)

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Could not append audit event {event.event_id}: {e}")
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return self._matching(lambda e: e.correlation_id == correlation_id)

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        return self._matching(
            lambda e: e.entity_type == entity_type and e.entity_id == entity_id
        )

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return self._matching(lambda e: True)[::-1][:limit]
