"""
Two-Stage Request Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Participant membership (payer, item assignees, split keys)
- Split-mode inputs present for the selected mode
- Non-zero amounts where zero is meaningless

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Absurd amount detection
- Bills with nothing to split

Stage 2 only runs when stage 1 passes. Errors block the operation;
warnings are reported but never block.

IMPORTANT: Validation NEVER silently fixes issues. Everything runs before
the first write, so a rejected request leaves no trace in storage.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from finance_engine.config import get_settings
from finance_engine.errors import ValidationError
from finance_engine.models.bill import NewBill, SplitMode
from finance_engine.models.budget import NewBudget
from finance_engine.models.money import ZERO
from finance_engine.models.transaction import NewTransaction, TransactionPatch
from finance_engine.models.validation import ValidationIssue, ValidationResult


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_request(model: type[ModelT], data: Any) -> ModelT:
    """
    Build a request model, reporting pydantic errors as engine ValidationErrors.

    Instances of ``model`` pass straight through.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in error["loc"]) or model.__name__,
                issue_type=error["type"],
                message=error["msg"],
                severity="error",
            )
            for error in e.errors()
        ]
        raise ValidationError(
            f"Invalid {model.__name__}: {len(issues)} issue(s)",
            issues=issues,
        ) from e


def ensure_valid(result: ValidationResult) -> ValidationResult:
    """Raise ValidationError if the result has any error-level issue."""
    if result.has_errors:
        messages = "; ".join(issue.message for issue in result.errors)
        raise ValidationError(
            f"Invalid {result.subject}: {messages}",
            issues=result.issues,
        )
    return result


class RequestValidator:
    """
    Validates mutating requests before any orchestrator writes.

    Stage 1: Schema validation
    Stage 2: Semantic validation
    """

    def __init__(self, today: Optional[Callable[[], date]] = None):
        self._settings = get_settings().app
        self._today = today or date.today

    def _run(
        self,
        subject: str,
        schema: Callable[[], list[ValidationIssue]],
        semantic: Callable[[], list[ValidationIssue]],
    ) -> ValidationResult:
        issues = schema()
        schema_valid = not any(issue.severity == "error" for issue in issues)

        semantic_valid = False
        if schema_valid:
            semantic_issues = semantic()
            issues.extend(semantic_issues)
            semantic_valid = not any(issue.severity == "error" for issue in semantic_issues)

        return ValidationResult(
            subject=subject,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=issues,
            warnings=[i.message for i in issues if i.severity == "warning"],
        )

    # =========================================================================
    # SHARED CHECKS
    # =========================================================================

    def _check_date(self, field: str, value: Optional[date]) -> list[ValidationIssue]:
        if value is None:
            return []
        max_future_date = self._today() + timedelta(
            days=self._settings.future_date_tolerance_days
        )
        if value > max_future_date:
            return [ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"Date ({value}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            )]
        return []

    def _check_amount_size(self, field: str, amount: Optional[Decimal]) -> list[ValidationIssue]:
        if amount is None:
            return []
        max_amount = Decimal(str(self._settings.max_transaction_amount))
        if amount > max_amount:
            return [ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"Amount ({amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            )]
        return []

    @staticmethod
    def _check_non_zero(field: str, amount: Optional[Decimal]) -> list[ValidationIssue]:
        if amount is not None and amount == ZERO:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message="Amount must not be zero",
                severity="error",
            )]
        return []

    # =========================================================================
    # BILLS
    # =========================================================================

    def validate_new_bill(self, new_bill: NewBill) -> ValidationResult:
        """Validate a bill creation request."""

        def schema() -> list[ValidationIssue]:
            issues = []
            members = set(new_bill.participants)

            if new_bill.paid_by not in members:
                issues.append(ValidationIssue(
                    field="paid_by",
                    issue_type="unknown_participant",
                    message=f"Payer {new_bill.paid_by!r} is not a participant",
                    severity="error",
                    suggested_fix="Add the payer to the participants",
                ))

            for index, item in enumerate(new_bill.items):
                unknown = sorted(set(item.participant_ids) - members)
                if unknown:
                    issues.append(ValidationIssue(
                        field=f"items.{index}.participant_ids",
                        issue_type="unknown_participant",
                        message=f"Item {item.name!r} is assigned to unknown participants {unknown}",
                        severity="error",
                    ))

            if new_bill.split_mode == SplitMode.PERCENTAGE:
                issues.extend(self._check_split_keys(
                    "percentages", new_bill.percentages, members
                ))
            elif new_bill.split_mode == SplitMode.CUSTOM:
                issues.extend(self._check_split_keys(
                    "custom_splits", new_bill.custom_splits, members
                ))

            return issues

        def semantic() -> list[ValidationIssue]:
            issues = self._check_date("date", new_bill.date)

            if not new_bill.items:
                issues.append(ValidationIssue(
                    field="items",
                    issue_type="missing",
                    message="Bill has no items; only the tip will be split",
                    severity="warning",
                ))
            elif (
                new_bill.split_mode == SplitMode.ITEMIZED
                and not any(item.participant_ids for item in new_bill.items)
            ):
                issues.append(ValidationIssue(
                    field="items",
                    issue_type="unassigned",
                    message="No item is assigned to anyone; every split will be zero",
                    severity="warning",
                    suggested_fix="Assign participants to items or choose another split mode",
                ))

            subtotal = sum((item.amount for item in new_bill.items), ZERO)
            issues.extend(self._check_amount_size("items", subtotal))
            return issues

        return self._run("bill", schema, semantic)

    @staticmethod
    def _check_split_keys(
        field: str,
        values: dict,
        members: set[str],
    ) -> list[ValidationIssue]:
        if not values:
            return [ValidationIssue(
                field=field,
                issue_type="missing",
                message=f"{field} are required for this split mode",
                severity="error",
            )]
        unknown = sorted(set(values) - members)
        if unknown:
            return [ValidationIssue(
                field=field,
                issue_type="unknown_participant",
                message=f"{field} reference unknown participants {unknown}",
                severity="error",
            )]
        return []

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def validate_new_transaction(self, transaction: NewTransaction) -> ValidationResult:
        """Validate a transaction creation request."""
        return self._run(
            "transaction",
            lambda: self._check_non_zero("amount", transaction.amount),
            lambda: (
                self._check_date("date", transaction.date)
                + self._check_amount_size("amount", transaction.amount)
            ),
        )

    def validate_transaction_patch(self, patch: TransactionPatch) -> ValidationResult:
        """Validate a partial transaction update."""
        return self._run(
            "transaction",
            lambda: self._check_non_zero("amount", patch.amount),
            lambda: (
                self._check_date("date", patch.date)
                + self._check_amount_size("amount", patch.amount)
            ),
        )

    # =========================================================================
    # BUDGETS AND GOALS
    # =========================================================================

    def validate_new_budget(self, budget: NewBudget) -> ValidationResult:
        """Validate a budget creation request."""

        def schema() -> list[ValidationIssue]:
            issues = []
            if not budget.category:
                issues.append(ValidationIssue(
                    field="category",
                    issue_type="missing",
                    message="Budget has no category; no spending will ever be counted against it",
                    severity="warning",
                ))
            return issues

        def semantic() -> list[ValidationIssue]:
            if budget.amount == ZERO:
                return [ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message="Budget cap is zero; it will be exceeded immediately",
                    severity="warning",
                )]
            return []

        return self._run("budget", schema, semantic)

    def validate_goal_amount(self, amount: Optional[Decimal]) -> ValidationResult:
        """Validate a contribution or withdrawal amount."""

        def schema() -> list[ValidationIssue]:
            if amount is None:
                return [ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required",
                    severity="error",
                )]
            return self._check_non_zero("amount", amount)

        return self._run(
            "goal",
            schema,
            lambda: self._check_amount_size("amount", abs(amount)),
        )
