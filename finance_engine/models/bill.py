"""
Bill Models

A bill is a shared expense: one participant paid, everybody owes a split.

DESIGN DECISION: ``splits`` and ``payment_status`` are participant-keyed maps
whose keys are checked against ``participants`` every time a Bill is built.
Bills are never mutated in place - the ``with_*`` helpers rebuild and
re-validate the model, so an unknown participant can never sneak in.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from finance_engine.models.money import ZERO, Money


# =============================================================================
# ENUMS
# =============================================================================

class BillStatus(str, Enum):
    """
    Bill lifecycle status.

    ``draft`` is only ever set at creation time. The settlement state machine
    moves bills between ``finalized`` and ``settled``.
    """
    DRAFT = "draft"
    FINALIZED = "finalized"
    SETTLED = "settled"


class PaymentState(str, Enum):
    """Per-participant settlement state."""
    PENDING = "pending"
    PAID = "paid"


class SplitMode(str, Enum):
    """How a new bill's total is divided between participants."""
    ITEMIZED = "itemized"
    EQUAL = "equal"
    PERCENTAGE = "percentage"
    CUSTOM = "custom"


# =============================================================================
# CORE BILL MODEL
# =============================================================================

class BillItem(BaseModel):
    """A line on the bill and the participants sharing it."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., ge=0)
    participant_ids: list[str] = Field(default_factory=list)


def _unique(values: list[str]) -> list[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class Bill(BaseModel):
    """
    A persisted shared expense.

    INVARIANTS (checked on every construction):
    - total == subtotal + tax + tip
    - paid_by is a participant
    - every key of splits / payment_status is a participant
    - payment_status[paid_by] is always True
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1, description="Owner of the bill")

    description: str = Field(..., min_length=1, max_length=500)
    items: list[BillItem] = Field(default_factory=list)
    paid_by: str = Field(..., min_length=1)
    participants: list[str] = Field(..., min_length=1)

    subtotal: Money = Field(..., ge=0)
    tax: Money = Field(default=ZERO, ge=0)
    tax_percentage: Decimal = Field(default=Decimal("0"), ge=0)
    tip: Money = Field(default=ZERO, ge=0)
    total: Money = Field(..., ge=0)

    date: date
    category: str = Field(..., min_length=1)
    status: BillStatus = BillStatus.FINALIZED

    splits: dict[str, Money] = Field(default_factory=dict)
    payment_status: dict[str, bool] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('participants')
    @classmethod
    def dedupe_participants(cls, v: list[str]) -> list[str]:
        return _unique(v)

    @model_validator(mode='after')
    def check_invariants(self) -> 'Bill':
        members = set(self.participants)

        if self.paid_by not in members:
            raise ValueError(f"Payer {self.paid_by!r} is not a participant")

        unknown = (set(self.splits) | set(self.payment_status)) - members
        for item in self.items:
            unknown |= set(item.participant_ids) - members
        if unknown:
            raise ValueError(f"Unknown participants: {sorted(unknown)}")

        if self.total != self.subtotal + self.tax + self.tip:
            raise ValueError("Total must equal subtotal + tax + tip")

        # The payer is self-settled
        self.payment_status[self.paid_by] = True
        return self

    def owed_by(self, participant_id: str) -> Decimal:
        """Split owed by a participant (zero when they have none)."""
        return self.splits.get(participant_id, ZERO)

    def is_paid(self, participant_id: str) -> bool:
        return participant_id == self.paid_by or self.payment_status.get(participant_id, False)

    def with_payment_status(self, participant_id: str, paid: bool) -> 'Bill':
        """Return a re-validated copy with one participant's payment flag changed."""
        payment_status = dict(self.payment_status)
        payment_status[participant_id] = paid
        return self._rebuild(payment_status=payment_status)

    def with_status(self, status: BillStatus) -> 'Bill':
        return self._rebuild(status=status)

    def _rebuild(self, **changes) -> 'Bill':
        data = self.model_dump()
        data.update(changes)
        data["updated_at"] = datetime.utcnow()
        return Bill.model_validate(data)


class NewBill(BaseModel):
    """
    A bill creation request.

    Subtotal, tax and total are NOT accepted from the caller; they are
    computed from the items so the total invariant holds by construction.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    paid_by: str = Field(..., min_length=1)
    participants: list[str] = Field(..., min_length=1)
    date: date
    items: list[BillItem] = Field(default_factory=list)
    tax_percentage: Decimal = Field(default=Decimal("0"), ge=0)
    tip: Money = Field(default=ZERO, ge=0)
    category: Optional[str] = None
    status: BillStatus = BillStatus.FINALIZED

    split_mode: SplitMode = SplitMode.ITEMIZED
    percentages: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Participant -> percentage of total (percentage mode)"
    )
    custom_splits: dict[str, Money] = Field(
        default_factory=dict,
        description="Participant -> amount owed (custom mode)"
    )

    @field_validator('participants')
    @classmethod
    def dedupe_participants(cls, v: list[str]) -> list[str]:
        return _unique(v)

    @field_validator('status')
    @classmethod
    def only_initial_statuses(cls, v: BillStatus) -> BillStatus:
        if v == BillStatus.SETTLED:
            raise ValueError("A bill cannot be created as settled")
        return v


# =============================================================================
# SPLIT / SETTLEMENT RESULT MODELS
# =============================================================================

class SplitResult(BaseModel):
    """Output of the split calculator."""

    subtotal: Money
    tax: Money
    tip: Money
    total: Money
    splits: dict[str, Money] = Field(default_factory=dict)

    @property
    def allocated(self) -> Decimal:
        return sum(self.splits.values(), ZERO)


class SettlementTransition(BaseModel):
    """What a single payment-status write changed."""

    participant_id: str
    previous: PaymentState
    current: PaymentState
    bill_status_before: BillStatus
    bill_status_after: BillStatus

    @property
    def changed(self) -> bool:
        return self.previous != self.current

    @property
    def became_paid(self) -> bool:
        return self.previous == PaymentState.PENDING and self.current == PaymentState.PAID

    @property
    def became_pending(self) -> bool:
        return self.previous == PaymentState.PAID and self.current == PaymentState.PENDING


class ParticipantSettlement(BaseModel):
    participant_id: str
    owed_amount: Money
    is_paid: bool
    remaining_amount: Money


class SettlementSummary(BaseModel):
    """
    Per-bill settlement view.

    Only non-payer participants with a positive split are listed.
    """

    bill_id: UUID
    participants: list[ParticipantSettlement] = Field(default_factory=list)
    total_owed: Money
    total_paid: Money
    total_remaining: Money
    is_fully_settled: bool
    settlement_percentage: int = Field(..., ge=0, le=100)


class DebtEdge(BaseModel):
    """One "who owes whom" entry."""
    model_config = ConfigDict(populate_by_name=True)

    from_participant: str = Field(..., alias="from")
    to_participant: str = Field(..., alias="to")
    amount: Money
