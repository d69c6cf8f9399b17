"""
Budget Models

A budget caps spending in one category over a date window. ``spent`` is a
running accumulator fed by the budget synchronizer; ``status`` is derived
from it.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from finance_engine.models.money import ZERO, Money, to_money


class BudgetPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BudgetStatus(str, Enum):
    ACTIVE = "active"
    EXCEEDED = "exceeded"
    COMPLETED = "completed"


def derive_budget_status(amount: Decimal, spent: Decimal) -> BudgetStatus:
    """
    ``exceeded`` iff spent >= amount, otherwise ``active``.

    NOTE: this never yields ``completed``; recomputing a completed budget
    moves it back to active/exceeded.
    """
    if spent >= amount:
        return BudgetStatus.EXCEEDED
    return BudgetStatus.ACTIVE


class Budget(BaseModel):
    """A persisted spending cap."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    name: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., ge=0, description="Spending cap")
    spent: Money = Field(default=ZERO, ge=0, description="Running accumulator")
    period: BudgetPeriod
    category: Optional[str] = None
    start_date: date
    end_date: date
    status: BudgetStatus = BudgetStatus.ACTIVE

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_window(self) -> 'Budget':
        if self.end_date < self.start_date:
            raise ValueError("Budget end date cannot be before start date")
        return self

    def covers(self, category: str, on_date: date) -> bool:
        """Exact category match and start_date <= on_date <= end_date."""
        return (
            self.category == category
            and self.start_date <= on_date <= self.end_date
        )

    def apply_delta(self, delta: Decimal) -> 'Budget':
        """Return a copy with ``spent`` moved by ``delta`` (clamped at 0) and status recomputed."""
        spent = max(ZERO, self.spent + to_money(delta))
        return self.with_amounts(spent=spent)

    def with_amounts(
        self,
        amount: Optional[Decimal] = None,
        spent: Optional[Decimal] = None,
    ) -> 'Budget':
        """Return a copy with new amount/spent and the derived status."""
        data = self.model_dump()
        if amount is not None:
            data["amount"] = amount
        if spent is not None:
            data["spent"] = spent
        data["status"] = derive_budget_status(
            to_money(data["amount"]), to_money(data["spent"])
        )
        data["updated_at"] = datetime.utcnow()
        return Budget.model_validate(data)


class NewBudget(BaseModel):
    """A budget creation request. New budgets always start with nothing spent."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., ge=0)
    period: BudgetPeriod
    category: Optional[str] = None
    start_date: date
    end_date: date


class BudgetPatch(BaseModel):
    """Partial budget update. Changing amount or spent recomputes status."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Money] = Field(default=None, ge=0)
    spent: Optional[Money] = Field(default=None, ge=0)
    period: Optional[BudgetPeriod] = None
    category: Optional[str] = None
    status: Optional[BudgetStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BudgetProgress(BaseModel):
    """Read-only progress view of one budget."""

    budget: Budget
    progress: float = Field(..., ge=0, le=100, description="Percent of the cap spent")
    remaining: Money
    days_left: int = Field(..., ge=0)
    on_track: bool
    projected_spend: Money
