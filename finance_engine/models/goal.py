"""
Goal Models

A savings goal with a signed contribution ledger. Contributions append
positive entries, withdrawals negative ones; ``current_amount`` moves with
them.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from finance_engine.models.money import ZERO, Money


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


class GoalPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def derive_goal_status(
    current_amount: Decimal,
    target_amount: Decimal,
    existing: Optional[GoalStatus] = None,
) -> GoalStatus:
    """
    Completion overrides everything; ``paused`` is otherwise sticky.

    A completed goal that drops below target goes back to active.
    """
    if current_amount >= target_amount:
        return GoalStatus.COMPLETED
    if existing == GoalStatus.PAUSED:
        return GoalStatus.PAUSED
    return GoalStatus.ACTIVE


class Contribution(BaseModel):
    """One signed movement of money into (positive) or out of (negative) a goal."""

    amount: Money
    note: Optional[str] = Field(default=None, max_length=500)
    date: datetime = Field(default_factory=datetime.utcnow)


class Goal(BaseModel):
    """A persisted savings goal."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    target_amount: Money = Field(..., gt=0)
    current_amount: Money = Field(default=ZERO, ge=0)
    target_date: Optional[date] = None
    category: str = Field(..., min_length=1)
    priority: GoalPriority = GoalPriority.MEDIUM
    status: GoalStatus = GoalStatus.ACTIVE
    contributions: list[Contribution] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def contributed_total(self) -> Decimal:
        return sum((c.amount for c in self.contributions), ZERO)

    def with_contribution(self, amount: Decimal, note: Optional[str] = None) -> 'Goal':
        """Append a signed contribution, move current_amount and re-derive status."""
        data = self.model_dump()
        current = self.current_amount + amount
        data["current_amount"] = current
        data["contributions"] = data["contributions"] + [
            Contribution(amount=amount, note=note).model_dump()
        ]
        data["status"] = derive_goal_status(current, self.target_amount, self.status)
        data["updated_at"] = datetime.utcnow()
        return Goal.model_validate(data)


class NewGoal(BaseModel):
    """A goal creation request."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    target_amount: Money = Field(..., gt=0)
    current_amount: Money = Field(default=ZERO, ge=0)
    target_date: Optional[date] = None
    category: str = Field(..., min_length=1)
    priority: GoalPriority = GoalPriority.MEDIUM
    status: GoalStatus = GoalStatus.ACTIVE


class GoalPatch(BaseModel):
    """Partial goal update. Status is always re-derived from the amounts."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    target_amount: Optional[Money] = Field(default=None, gt=0)
    current_amount: Optional[Money] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1)
    priority: Optional[GoalPriority] = None
    status: Optional[GoalStatus] = None
    target_date: Optional[date] = None
