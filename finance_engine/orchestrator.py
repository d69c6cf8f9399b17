"""
Main Orchestrator for the Finance Engine

This module ties together all the components and defines the end-to-end
flows for:
1. Bills (create -> settle participants -> delete)
2. Transactions (record / update / delete, with budget propagation)
3. Budgets (CRUD, progress, reconciliation)
4. Goals (CRUD, contributions and withdrawals)

DESIGN DECISION: Every mutating call runs its steps in a fixed order:
1. Validate (and look up) - raise before anything is written
2. Persist the primary aggregate, with derived state already computed
3. Mirror transactions
4. Synchronize budgets

Steps 3 and 4 are best-effort. They run through the SecondaryStepRunner, so
their failures are logged and recorded for reconciliation but never undo
step 2 or reach the caller. Budget spend follows the expense transactions
that actually exist: when a mirror write fails, its budget delta is skipped
too, and ``BudgetFlow.reconcile_budget`` can rebuild ``spent`` later.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

from finance_engine.audit import AuditLogger, create_correlation_id
from finance_engine.config import Settings, get_settings
from finance_engine.engine.budget_sync import BudgetSynchronizer, BudgetSyncResult
from finance_engine.engine.mirroring import (
    MirroredTransactionWriter,
    bill_mirror_match,
    settlement_match,
)
from finance_engine.engine.reporting import (
    budget_progress,
    optimal_settlements,
    settlement_summary,
    stats_period_start,
    transaction_stats,
)
from finance_engine.engine.secondary import SecondaryStepRunner
from finance_engine.engine.settlement import apply_payment_status, finalize
from finance_engine.engine.splits import compute_split, split_new_bill
from finance_engine.errors import (
    ConflictError,
    FinanceEngineError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from finance_engine.models.audit import AuditEventType
from finance_engine.models.bill import (
    Bill,
    BillItem,
    DebtEdge,
    NewBill,
    PaymentState,
    SettlementSummary,
    SplitResult,
)
from finance_engine.models.budget import (
    Budget,
    BudgetPatch,
    BudgetProgress,
    BudgetStatus,
    NewBudget,
    derive_budget_status,
)
from finance_engine.models.goal import Goal, GoalPatch, NewGoal, derive_goal_status
from finance_engine.models.money import ZERO, to_money
from finance_engine.models.transaction import (
    MetadataKey,
    NewTransaction,
    Transaction,
    TransactionPatch,
    TransactionStats,
    TransactionType,
)
from finance_engine.models.validation import ValidationResult
from finance_engine.services.storage import (
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
from finance_engine.validation import RequestValidator, ensure_valid, parse_request


class _ConsistencyFlow:
    """Shared plumbing: auditing, primary writes and budget propagation."""

    def __init__(
        self,
        budget_storage: Optional[BudgetStorageInterface],
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
        runner: Optional[SecondaryStepRunner] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._audit_logger = audit_logger
        self._today = today or date.today
        self._validator = validator or RequestValidator(today=self._today)
        self._runner = runner or SecondaryStepRunner(audit_logger)
        self._synchronizer = (
            BudgetSynchronizer(budget_storage) if budget_storage is not None else None
        )

    async def _audit(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[UUID],
        user_id: str,
        description: str,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_entity_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                description=description,
                correlation_id=correlation_id,
                details=details,
            )

    async def _check(
        self,
        result: ValidationResult,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        """Audit and raise if validation found errors."""
        if result.has_errors and self._audit_logger:
            await self._audit_logger.log_validation_failed(
                entity_type=result.subject,
                user_id=user_id,
                issues=[issue.model_dump() for issue in result.issues],
                correlation_id=correlation_id,
            )
        ensure_valid(result)

    @staticmethod
    def _changes(patch, nullable: tuple[str, ...] = ()) -> dict:
        """Explicitly set fields of a patch. None only clears nullable fields."""
        return {
            key: value
            for key, value in patch.model_dump(exclude_unset=True).items()
            if value is not None or key in nullable
        }

    @staticmethod
    async def _persist(write, what: str) -> bool:
        """
        Run a primary write.

        Engine errors pass through untouched; anything else the backend
        raises is reported as a StorageError.
        """
        try:
            return await write
        except FinanceEngineError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to {what}: {e}") from e

    async def _sync_budgets(
        self,
        step: str,
        user_id: str,
        category: Optional[str],
        on_date: Optional[date],
        delta: Decimal,
        correlation_id: UUID,
    ) -> Optional[BudgetSyncResult]:
        """
        Propagate a spend delta as a best-effort step.

        Budgets that failed individually are reported one by one, so each
        can be reconciled on its own.
        """
        if self._synchronizer is None:
            return None

        details = {
            "category": category,
            "date": on_date.isoformat() if on_date else None,
            "delta": str(delta),
        }
        result = await self._runner.run(
            step=step,
            action=lambda: self._synchronizer.apply_delta(user_id, category, on_date, delta),
            user_id=user_id,
            correlation_id=correlation_id,
            details=details,
        )
        if result is None:
            return None

        for budget_id, error in result.failed.items():
            await self._runner.report_failure(
                step=step,
                user_id=user_id,
                error_message=error,
                attempts=1,
                details={**details, "budget_id": str(budget_id)},
                correlation_id=correlation_id,
            )

        if result.updated and self._audit_logger:
            await self._audit_logger.log_budget_synced(
                user_id=user_id,
                category=category,
                on_date=details["date"],
                delta=str(result.delta),
                budget_ids=[str(b.id) for b in result.updated],
                correlation_id=correlation_id,
            )
        return result


# =============================================================================
# BILLS
# =============================================================================

class BillFlow(_ConsistencyFlow):
    """
    Orchestrates shared bills.

    Flow for creation:
    1. Validate request, compute split (pure)
    2. Save bill with payment_status = {payer: paid}
    3. Mirror the payer's outlay as one expense for the total
    4. Add the total to budgets covering the bill's category and date

    Flow for a payment status change:
    1. Settlement state machine -> new bill + transition edge
    2. Save bill
    3. pending -> paid: mirror an income for the participant's split
       paid -> pending: remove that income again
    """

    def __init__(
        self,
        bill_storage: BillStorageInterface,
        transaction_storage: TransactionStorageInterface,
        budget_storage: Optional[BudgetStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
        runner: Optional[SecondaryStepRunner] = None,
        today: Optional[Callable[[], date]] = None,
        bill_category: Optional[str] = None,
        settlement_category: Optional[str] = None,
    ):
        super().__init__(budget_storage, audit_logger, validator, runner, today)
        self._bills = bill_storage
        self._bill_category = bill_category or get_settings().app.bill_category
        self._writer = MirroredTransactionWriter(
            transaction_storage,
            settlement_category=settlement_category,
            today=self._today,
        )

    def compute_split(
        self,
        items: list[Union[BillItem, dict]],
        tax_percentage,
        tip,
        participants: list[str],
    ) -> SplitResult:
        """Preview a split without saving anything."""
        return compute_split(
            items=[parse_request(BillItem, item) for item in items],
            tax_percentage=Decimal(str(tax_percentage or 0)),
            tip=to_money(tip or 0),
            participants=list(dict.fromkeys(participants)),
        )

    async def get_bill(self, user_id: str, bill_id: UUID) -> Bill:
        bill = await self._bills.get_bill(user_id, bill_id)
        if bill is None:
            raise NotFoundError("bill", bill_id)
        return bill

    async def list_bills(self, user_id: str) -> list[Bill]:
        return await self._bills.list_bills(user_id)

    async def create_bill(
        self,
        user_id: str,
        new_bill: Union[NewBill, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Bill:
        """
        Create a bill and mirror the payer's outlay.

        Returns the saved bill even if mirroring or budget sync failed.
        """
        correlation_id = correlation_id or create_correlation_id()

        request = parse_request(NewBill, new_bill)
        await self._check(self._validator.validate_new_bill(request), user_id, correlation_id)
        split = split_new_bill(request)

        bill = parse_request(Bill, {
            "user_id": user_id,
            "description": request.description,
            "items": [item.model_dump() for item in request.items],
            "paid_by": request.paid_by,
            "participants": request.participants,
            "subtotal": split.subtotal,
            "tax": split.tax,
            "tax_percentage": request.tax_percentage,
            "tip": split.tip,
            "total": split.total,
            "date": request.date,
            "category": request.category or self._bill_category,
            "status": request.status,
            "splits": split.splits,
            "payment_status": {request.paid_by: True},
        })

        await self._persist(self._bills.save_bill(bill), "save bill")

        if self._audit_logger:
            await self._audit_logger.log_bill_created(
                bill_id=bill.id,
                user_id=user_id,
                total=str(bill.total),
                correlation_id=correlation_id,
            )

        mirror = await self._runner.run(
            step="mirror_bill_payment",
            action=lambda: self._writer.mirror_bill_payment(bill),
            user_id=user_id,
            correlation_id=correlation_id,
            details={
                "bill_id": str(bill.id),
                "amount": str(bill.total),
                "category": bill.category,
                "date": bill.date.isoformat(),
            },
        )
        if mirror is not None:
            await self._audit_mirror(mirror, correlation_id)
            await self._sync_budgets(
                "sync_budgets_bill_created",
                user_id,
                mirror.category,
                mirror.date,
                mirror.amount,
                correlation_id,
            )

        return bill

    async def set_participant_payment_status(
        self,
        user_id: str,
        bill_id: UUID,
        participant_id: str,
        status: Union[str, PaymentState],
        correlation_id: Optional[UUID] = None,
    ) -> Bill:
        """
        Mark one participant paid or pending.

        Repeating the current state changes nothing and mirrors nothing.
        """
        correlation_id = correlation_id or create_correlation_id()

        bill = await self.get_bill(user_id, bill_id)
        updated, transition = apply_payment_status(bill, participant_id, status)

        status_changed = transition.bill_status_before != transition.bill_status_after
        if not transition.changed and not status_changed:
            return bill

        if not await self._persist(self._bills.update_bill(updated), "update bill"):
            raise NotFoundError("bill", bill_id)

        if self._audit_logger:
            await self._audit_logger.log_payment_status_updated(
                bill_id=bill.id,
                user_id=user_id,
                participant_id=participant_id,
                previous=transition.previous.value,
                current=transition.current.value,
                bill_status=updated.status.value,
                correlation_id=correlation_id,
            )

        details = {
            "bill_id": str(bill.id),
            "participant_id": participant_id,
            "amount": str(updated.owed_by(participant_id)),
        }
        if transition.became_paid:
            mirror = await self._runner.run(
                step="mirror_settlement",
                action=lambda: self._writer.mirror_settlement(updated, participant_id),
                user_id=user_id,
                correlation_id=correlation_id,
                details=details,
            )
            if mirror is not None:
                await self._audit_mirror(mirror, correlation_id)
        elif transition.became_pending:
            removed = await self._runner.run(
                step="remove_settlement",
                action=lambda: self._writer.remove_settlement(updated, participant_id),
                user_id=user_id,
                correlation_id=correlation_id,
                details=details,
                idempotent=True,
            )
            if removed is not None and self._audit_logger:
                await self._audit_logger.log_mirrors_removed(
                    user_id=user_id,
                    match=settlement_match(bill, participant_id),
                    removed_count=len(removed),
                    correlation_id=correlation_id,
                )

        return updated

    async def settle_bill(
        self,
        user_id: str,
        bill_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Bill:
        """Mark every participant paid, one transition at a time."""
        correlation_id = correlation_id or create_correlation_id()
        bill = await self.get_bill(user_id, bill_id)

        unpaid = [p for p in bill.participants if not bill.is_paid(p)]
        # Nobody left to mark: let the payer's no-op re-derive the status
        for participant_id in unpaid or [bill.paid_by]:
            bill = await self.set_participant_payment_status(
                user_id, bill_id, participant_id, PaymentState.PAID, correlation_id
            )
        return bill

    async def finalize_bill(
        self,
        user_id: str,
        bill_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Bill:
        """Move a draft bill to finalized (or straight to settled)."""
        correlation_id = correlation_id or create_correlation_id()
        bill = await self.get_bill(user_id, bill_id)
        finalized = finalize(bill)

        if not await self._persist(self._bills.update_bill(finalized), "update bill"):
            raise NotFoundError("bill", bill_id)

        await self._audit(
            AuditEventType.BILL_FINALIZED, "bill", bill.id, user_id,
            f"Bill finalized as {finalized.status.value}", correlation_id,
        )
        return finalized

    async def delete_bill(
        self,
        user_id: str,
        bill_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a bill and every transaction mirrored from it.

        The budget effect of the payment expense is reversed for each
        expense mirror that was actually deleted.
        """
        correlation_id = correlation_id or create_correlation_id()
        bill = await self.get_bill(user_id, bill_id)

        if not await self._persist(self._bills.delete_bill(user_id, bill_id), "delete bill"):
            raise NotFoundError("bill", bill_id)

        await self._audit(
            AuditEventType.BILL_DELETED, "bill", bill.id, user_id,
            f"Bill deleted: {bill.description}", correlation_id,
        )

        removed = await self._runner.run(
            step="remove_bill_mirrors",
            action=lambda: self._writer.remove_bill_mirrors(bill),
            user_id=user_id,
            correlation_id=correlation_id,
            details={"bill_id": str(bill.id)},
            idempotent=True,
        )
        if removed is None:
            return

        if self._audit_logger:
            await self._audit_logger.log_mirrors_removed(
                user_id=user_id,
                match=bill_mirror_match(bill),
                removed_count=len(removed),
                correlation_id=correlation_id,
            )

        for transaction in removed:
            if transaction.is_expense:
                await self._sync_budgets(
                    "sync_budgets_bill_deleted",
                    user_id,
                    transaction.category,
                    transaction.date,
                    -transaction.amount,
                    correlation_id,
                )

    async def get_settlement_summary(self, user_id: str, bill_id: UUID) -> SettlementSummary:
        return settlement_summary(await self.get_bill(user_id, bill_id))

    async def get_optimal_settlements(self, user_id: str, bill_id: UUID) -> list[DebtEdge]:
        """Who pays whom on this bill. A per-bill projection, not debt netting."""
        return optimal_settlements(await self.get_bill(user_id, bill_id))

    async def _audit_mirror(self, mirror: Transaction, correlation_id: UUID) -> None:
        if self._audit_logger:
            await self._audit_logger.log_mirror_created(
                transaction_id=mirror.id,
                user_id=mirror.user_id,
                payment_type=str(mirror.metadata.get(MetadataKey.PAYMENT_TYPE)),
                amount=str(mirror.amount),
                correlation_id=correlation_id,
            )


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionFlow(_ConsistencyFlow):
    """
    Orchestrates direct transaction entry.

    Every expense moves budget spend:
    - record:  +amount on (category, date)
    - delete:  -amount on (category, date)
    - update:  -old.amount on the OLD (category, date),
               then +new.amount on the NEW ones
    """

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        budget_storage: Optional[BudgetStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
        runner: Optional[SecondaryStepRunner] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        super().__init__(budget_storage, audit_logger, validator, runner, today)
        self._transactions = transaction_storage

    async def get_transaction(self, user_id: str, transaction_id: UUID) -> Transaction:
        transaction = await self._transactions.get_transaction(user_id, transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    async def list_transactions(self, user_id: str, **filters: Any) -> list[Transaction]:
        return await self._transactions.list_transactions(user_id, **filters)

    async def record_transaction(
        self,
        user_id: str,
        new_transaction: Union[NewTransaction, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        correlation_id = correlation_id or create_correlation_id()

        request = parse_request(NewTransaction, new_transaction)
        await self._check(
            self._validator.validate_new_transaction(request), user_id, correlation_id
        )

        transaction = parse_request(Transaction, {
            "user_id": user_id,
            **request.model_dump(),
        })
        await self._persist(
            self._transactions.save_transaction(transaction), "save transaction"
        )
        await self._audit(
            AuditEventType.TRANSACTION_RECORDED, "transaction", transaction.id, user_id,
            f"Recorded {transaction.type.value} of {transaction.amount}", correlation_id,
        )

        if transaction.is_expense:
            await self._sync_budgets(
                "sync_budgets_transaction_recorded",
                user_id,
                transaction.category,
                transaction.date,
                transaction.amount,
                correlation_id,
            )
        return transaction

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        patch: Union[TransactionPatch, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Apply a partial update.

        CRITICAL: the old expense is removed from budgets using its ORIGINAL
        category and date, so a category change moves spend between budgets
        instead of leaking it.
        """
        correlation_id = correlation_id or create_correlation_id()

        request = parse_request(TransactionPatch, patch)
        await self._check(
            self._validator.validate_transaction_patch(request), user_id, correlation_id
        )

        old = await self.get_transaction(user_id, transaction_id)
        changes = self._changes(request, nullable=("ledger_id",))
        updated = parse_request(Transaction, {
            **old.model_dump(),
            **changes,
            "updated_at": datetime.utcnow(),
        })

        if not await self._persist(
            self._transactions.update_transaction(updated), "update transaction"
        ):
            raise NotFoundError("transaction", transaction_id)

        await self._audit(
            AuditEventType.TRANSACTION_UPDATED, "transaction", updated.id, user_id,
            f"Updated fields: {sorted(changes)}", correlation_id,
            details={k: str(v) for k, v in changes.items()},
        )

        if old.is_expense:
            await self._sync_budgets(
                "sync_budgets_transaction_updated_old",
                user_id,
                old.category,
                old.date,
                -old.amount,
                correlation_id,
            )
        if updated.is_expense:
            await self._sync_budgets(
                "sync_budgets_transaction_updated_new",
                user_id,
                updated.category,
                updated.date,
                updated.amount,
                correlation_id,
            )
        return updated

    async def delete_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()
        transaction = await self.get_transaction(user_id, transaction_id)

        if not await self._persist(
            self._transactions.delete_transaction(user_id, transaction_id),
            "delete transaction",
        ):
            raise NotFoundError("transaction", transaction_id)

        await self._audit(
            AuditEventType.TRANSACTION_DELETED, "transaction", transaction.id, user_id,
            f"Deleted {transaction.type.value} of {transaction.amount}", correlation_id,
        )

        if transaction.is_expense:
            await self._sync_budgets(
                "sync_budgets_transaction_deleted",
                user_id,
                transaction.category,
                transaction.date,
                -transaction.amount,
                correlation_id,
            )

    async def get_stats(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        period: Optional[str] = None,
    ) -> TransactionStats:
        """
        Income, expenses and the expense breakdown by category.

        ``period`` (week, month or year) selects a trailing window ending
        today; explicit ``date_from`` / ``date_to`` take precedence over it.
        """
        if period is not None:
            today = self._today()
            try:
                start = stats_period_start(period, today)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            date_from = date_from or start
            date_to = date_to or today
        transactions = await self._transactions.list_transactions(
            user_id, date_from=date_from, date_to=date_to
        )
        return transaction_stats(transactions)


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetFlow(_ConsistencyFlow):
    """
    Orchestrates budgets.

    ``spent`` is normally moved only by the synchronizer. Direct edits of
    ``amount`` or ``spent`` are allowed and always recompute ``status``.
    """

    def __init__(
        self,
        budget_storage: BudgetStorageInterface,
        transaction_storage: Optional[TransactionStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
        today: Optional[Callable[[], date]] = None,
        on_track_threshold: Optional[float] = None,
    ):
        super().__init__(budget_storage, audit_logger, validator, None, today)
        self._budgets = budget_storage
        self._transactions = transaction_storage
        self._on_track_threshold = on_track_threshold

    async def get_budget(self, user_id: str, budget_id: UUID) -> Budget:
        budget = await self._budgets.get_budget(user_id, budget_id)
        if budget is None:
            raise NotFoundError("budget", budget_id)
        return budget

    async def list_budgets(self, user_id: str) -> list[Budget]:
        return await self._budgets.list_budgets(user_id)

    async def create_budget(
        self,
        user_id: str,
        new_budget: Union[NewBudget, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """New budgets start with nothing spent and status active."""
        correlation_id = correlation_id or create_correlation_id()

        request = parse_request(NewBudget, new_budget)
        await self._check(self._validator.validate_new_budget(request), user_id, correlation_id)

        budget = parse_request(Budget, {
            "user_id": user_id,
            **request.model_dump(),
            "spent": ZERO,
            "status": BudgetStatus.ACTIVE,
        })
        await self._persist(self._budgets.save_budget(budget), "save budget")
        await self._audit(
            AuditEventType.BUDGET_CREATED, "budget", budget.id, user_id,
            f"Budget created: {budget.name}", correlation_id,
        )
        return budget

    async def update_budget(
        self,
        user_id: str,
        budget_id: UUID,
        patch: Union[BudgetPatch, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        correlation_id = correlation_id or create_correlation_id()

        request = parse_request(BudgetPatch, patch)
        budget = await self.get_budget(user_id, budget_id)
        changes = self._changes(request, nullable=("category",))

        data = {**budget.model_dump(), **changes}
        if "amount" in changes or "spent" in changes:
            data["status"] = derive_budget_status(
                to_money(data["amount"]), to_money(data["spent"])
            )
        data["updated_at"] = datetime.utcnow()
        updated = parse_request(Budget, data)

        if not await self._persist(self._budgets.update_budget(updated), "update budget"):
            raise NotFoundError("budget", budget_id)

        await self._audit(
            AuditEventType.BUDGET_UPDATED, "budget", updated.id, user_id,
            f"Updated fields: {sorted(changes)}", correlation_id,
            details={k: str(v) for k, v in changes.items()},
        )
        return updated

    async def delete_budget(
        self,
        user_id: str,
        budget_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()
        budget = await self.get_budget(user_id, budget_id)

        if not await self._persist(self._budgets.delete_budget(user_id, budget_id), "delete budget"):
            raise NotFoundError("budget", budget_id)

        await self._audit(
            AuditEventType.BUDGET_DELETED, "budget", budget.id, user_id,
            f"Budget deleted: {budget.name}", correlation_id,
        )

    async def get_budget_progress(self, user_id: str, budget_id: UUID) -> BudgetProgress:
        budget = await self.get_budget(user_id, budget_id)
        return budget_progress(budget, self._today(), self._on_track_threshold)

    async def reconcile_budget(
        self,
        user_id: str,
        budget_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Rebuild ``spent`` from the expense transactions the budget covers.

        This is the repair path for budget deltas lost to suppressed
        failures. It counts every covered expense, including ones recorded
        before the budget was created.
        """
        correlation_id = correlation_id or create_correlation_id()
        if self._transactions is None:
            raise ConflictError("Budget reconciliation needs transaction storage")

        budget = await self.get_budget(user_id, budget_id)
        transactions = await self._transactions.list_transactions(
            user_id,
            type=TransactionType.EXPENSE,
            category=budget.category,
            date_from=budget.start_date,
            date_to=budget.end_date,
        )
        reconciled = BudgetSynchronizer.recompute_spent(budget, transactions)

        if not await self._persist(self._budgets.update_budget(reconciled), "update budget"):
            raise NotFoundError("budget", budget_id)

        await self._audit(
            AuditEventType.BUDGET_RECONCILED, "budget", budget.id, user_id,
            f"Spent reconciled from {budget.spent} to {reconciled.spent}", correlation_id,
            details={"previous_spent": str(budget.spent), "spent": str(reconciled.spent)},
        )
        return reconciled


# =============================================================================
# GOALS
# =============================================================================

class GoalFlow(_ConsistencyFlow):
    """
    Orchestrates savings goals.

    A contribution:
    1. Appends +amount to the goal and re-derives status
    2. Mirrors an expense for the amount
    3. Adds the amount to budgets covering the goal's category today

    A withdrawal is rejected if it exceeds the current amount; otherwise it
    appends -amount and mirrors an income. Withdrawals never touch budgets.
    """

    def __init__(
        self,
        goal_storage: GoalStorageInterface,
        transaction_storage: TransactionStorageInterface,
        budget_storage: Optional[BudgetStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
        runner: Optional[SecondaryStepRunner] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        super().__init__(budget_storage, audit_logger, validator, runner, today)
        self._goals = goal_storage
        self._writer = MirroredTransactionWriter(transaction_storage, today=self._today)

    async def get_goal(self, user_id: str, goal_id: UUID) -> Goal:
        goal = await self._goals.get_goal(user_id, goal_id)
        if goal is None:
            raise NotFoundError("goal", goal_id)
        return goal

    async def list_goals(self, user_id: str) -> list[Goal]:
        return await self._goals.list_goals(user_id)

    async def create_goal(
        self,
        user_id: str,
        new_goal: Union[NewGoal, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        correlation_id = correlation_id or create_correlation_id()

        request = parse_request(NewGoal, new_goal)
        goal = parse_request(Goal, {
            "user_id": user_id,
            **request.model_dump(),
            "status": derive_goal_status(
                request.current_amount, request.target_amount, request.status
            ),
        })
        await self._persist(self._goals.save_goal(goal), "save goal")
        await self._audit(
            AuditEventType.GOAL_CREATED, "goal", goal.id, user_id,
            f"Goal created: {goal.name}", correlation_id,
        )
        return goal

    async def update_goal(
        self,
        user_id: str,
        goal_id: UUID,
        patch: Union[GoalPatch, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        """Status is re-derived whenever amounts or status are touched."""
        correlation_id = correlation_id or create_correlation_id()

        request = parse_request(GoalPatch, patch)
        goal = await self.get_goal(user_id, goal_id)
        changes = self._changes(request, nullable=("description", "target_date"))

        data = {**goal.model_dump(), **changes}
        if {"current_amount", "target_amount", "status"} & set(changes):
            data["status"] = derive_goal_status(
                to_money(data["current_amount"]),
                to_money(data["target_amount"]),
                data["status"],
            )
        data["updated_at"] = datetime.utcnow()
        updated = parse_request(Goal, data)

        if not await self._persist(self._goals.update_goal(updated), "update goal"):
            raise NotFoundError("goal", goal_id)

        await self._audit(
            AuditEventType.GOAL_UPDATED, "goal", updated.id, user_id,
            f"Updated fields: {sorted(changes)}", correlation_id,
            details={k: str(v) for k, v in changes.items()},
        )
        return updated

    async def delete_goal(
        self,
        user_id: str,
        goal_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Deletes the goal only; its mirrored transactions stay in the history."""
        correlation_id = correlation_id or create_correlation_id()
        goal = await self.get_goal(user_id, goal_id)

        if not await self._persist(self._goals.delete_goal(user_id, goal_id), "delete goal"):
            raise NotFoundError("goal", goal_id)

        await self._audit(
            AuditEventType.GOAL_DELETED, "goal", goal.id, user_id,
            f"Goal deleted: {goal.name}", correlation_id,
        )

    async def _validated_amount(self, amount, user_id: str, correlation_id: UUID) -> Decimal:
        try:
            value = None if amount is None else to_money(amount)
        except (ArithmeticError, ValueError) as e:
            raise ValidationError(f"Invalid amount: {amount!r}") from e

        await self._check(self._validator.validate_goal_amount(value), user_id, correlation_id)
        return abs(value)

    async def add_goal_contribution(
        self,
        user_id: str,
        goal_id: UUID,
        amount,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        correlation_id = correlation_id or create_correlation_id()
        amount = await self._validated_amount(amount, user_id, correlation_id)

        goal = await self.get_goal(user_id, goal_id)
        updated = goal.with_contribution(amount, note)

        if not await self._persist(self._goals.update_goal(updated), "update goal"):
            raise NotFoundError("goal", goal_id)

        await self._audit(
            AuditEventType.GOAL_CONTRIBUTION_ADDED, "goal", goal.id, user_id,
            f"Contributed {amount} to {goal.name}", correlation_id,
            details={"amount": str(amount), "current_amount": str(updated.current_amount)},
        )

        mirror = await self._runner.run(
            step="mirror_goal_contribution",
            action=lambda: self._writer.mirror_goal_contribution(updated, amount, note),
            user_id=user_id,
            correlation_id=correlation_id,
            details={"goal_id": str(goal.id), "amount": str(amount)},
        )
        if mirror is not None:
            await self._sync_budgets(
                "sync_budgets_goal_contribution",
                user_id,
                mirror.category,
                mirror.date,
                mirror.amount,
                correlation_id,
            )
        return updated

    async def withdraw_from_goal(
        self,
        user_id: str,
        goal_id: UUID,
        amount,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        """
        Take money back out of a goal.

        Raises:
            ConflictError: the amount exceeds the goal's current amount.
                Nothing is written in that case.
        """
        correlation_id = correlation_id or create_correlation_id()
        amount = await self._validated_amount(amount, user_id, correlation_id)

        goal = await self.get_goal(user_id, goal_id)
        if amount > goal.current_amount:
            raise ConflictError(
                f"Cannot withdraw {amount}: goal only holds {goal.current_amount}"
            )

        updated = goal.with_contribution(-amount, note)
        if not await self._persist(self._goals.update_goal(updated), "update goal"):
            raise NotFoundError("goal", goal_id)

        await self._audit(
            AuditEventType.GOAL_WITHDRAWAL_MADE, "goal", goal.id, user_id,
            f"Withdrew {amount} from {goal.name}", correlation_id,
            details={"amount": str(amount), "current_amount": str(updated.current_amount)},
        )

        await self._runner.run(
            step="mirror_goal_withdrawal",
            action=lambda: self._writer.mirror_goal_withdrawal(updated, amount, note),
            user_id=user_id,
            correlation_id=correlation_id,
            details={"goal_id": str(goal.id), "amount": str(amount)},
        )
        return updated


def create_app_components(
    settings: Optional[Settings] = None,
) -> tuple[BillFlow, TransactionFlow, BudgetFlow, GoalFlow]:
    """
    Factory function to create all engine components.

    The storage backend comes from ``settings.app.storage_backend``. All
    flows share one audit logger and one secondary step runner.

    Returns:
        (bill_flow, transaction_flow, budget_flow, goal_flow)
    """
    settings = settings or get_settings()
    app = settings.app

    if app.storage_backend == "google_sheets":
        sheets_client = GoogleSheetsClient()
        bill_storage = GoogleSheetsBillStorage(sheets_client)
        transaction_storage = GoogleSheetsTransactionStorage(sheets_client)
        budget_storage = GoogleSheetsBudgetStorage(sheets_client)
        goal_storage = GoogleSheetsGoalStorage(sheets_client)
        audit_storage = GoogleSheetsAuditStorage(sheets_client)
    else:
        bill_storage = InMemoryBillStorage()
        transaction_storage = InMemoryTransactionStorage()
        budget_storage = InMemoryBudgetStorage()
        goal_storage = InMemoryGoalStorage()
        audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)
    runner = SecondaryStepRunner(
        audit_logger,
        attempts=app.secondary_step_attempts,
        min_wait=app.secondary_retry_min_wait_seconds,
        max_wait=app.secondary_retry_max_wait_seconds,
    )

    bill_flow = BillFlow(
        bill_storage,
        transaction_storage,
        budget_storage,
        audit_logger=audit_logger,
        runner=runner,
        bill_category=app.bill_category,
        settlement_category=app.settlement_category,
    )
    transaction_flow = TransactionFlow(
        transaction_storage,
        budget_storage,
        audit_logger=audit_logger,
        runner=runner,
    )
    budget_flow = BudgetFlow(
        budget_storage,
        transaction_storage,
        audit_logger=audit_logger,
        on_track_threshold=app.budget_on_track_threshold,
    )
    goal_flow = GoalFlow(
        goal_storage,
        transaction_storage,
        budget_storage,
        audit_logger=audit_logger,
        runner=runner,
    )

    return bill_flow, transaction_flow, budget_flow, goal_flow
