"""
Transaction Models

A transaction is one income or expense entry in the user's history.
Some are entered directly; others are "mirrored" - written by the engine
to reflect the cash-flow side effect of a bill or goal event.

DESIGN DECISION: ``amount`` is always stored positive. The direction lives
in ``type``. Mirrored transactions carry enough ``metadata`` to be found
and removed again when their origin is reversed.
"""

import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from finance_engine.models.money import Money


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MetadataKey:
    """Well-known metadata keys used to tag mirrored transactions."""
    BILL_ID = "billId"
    GOAL_ID = "goalId"
    PARTICIPANT_ID = "participantId"
    PAYMENT_TYPE = "paymentType"


class PaymentType(str, Enum):
    """Origin of a mirrored transaction."""
    BILL_PAYMENT = "bill_payment"
    BILL_SETTLEMENT = "bill_settlement"
    GOAL_CONTRIBUTION = "goal_contribution"
    GOAL_WITHDRAWAL = "goal_withdrawal"


def _absolute(v):
    return abs(v) if v is not None else v


class Transaction(BaseModel):
    """A persisted ledger entry."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    description: str = Field(..., min_length=1, max_length=500)
    amount: Money = Field(..., description="Always positive; sign implied by type")
    category: str = Field(..., min_length=1)
    date: date
    ledger_id: Optional[str] = None
    type: TransactionType
    status: TransactionStatus = TransactionStatus.COMPLETED
    metadata: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('amount')
    @classmethod
    def normalize_amount(cls, v):
        """Amounts are stored positive; a signed expense becomes its magnitude."""
        return _absolute(v)

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.EXPENSE

    @property
    def is_mirrored(self) -> bool:
        return MetadataKey.PAYMENT_TYPE in self.metadata

    def matches_metadata(self, match: dict[str, Any]) -> bool:
        """True when every key in ``match`` has the same (stringified) value."""
        return all(
            str(self.metadata.get(key)) == str(value)
            for key, value in match.items()
        )


class NewTransaction(BaseModel):
    """A transaction creation request."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    amount: Money
    category: str = Field(..., min_length=1)
    date: date
    type: TransactionType
    ledger_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator('amount')
    @classmethod
    def normalize_amount(cls, v):
        return _absolute(v)


class TransactionPatch(BaseModel):
    """
    A partial update. Only fields that were explicitly set are applied
    (``model_dump(exclude_unset=True)``).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    amount: Optional[Money] = None
    category: Optional[str] = Field(default=None, min_length=1)
    ledger_id: Optional[str] = None
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    metadata: Optional[dict[str, Any]] = None
    date: Optional[dt.date] = None

    @field_validator('amount')
    @classmethod
    def normalize_amount(cls, v):
        return _absolute(v)


class CategoryBreakdown(BaseModel):
    category: str
    amount: Money
    percentage: float


class TransactionStats(BaseModel):
    """Income/expense totals over a set of transactions."""

    total_income: Money
    total_expenses: Money
    net_amount: Money
    category_breakdown: list[CategoryBreakdown] = Field(default_factory=list)
