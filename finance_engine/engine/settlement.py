"""
Settlement State Machine

Per participant:  pending -> paid  (and back). The payer is always paid.
Per bill:         draft -> finalized <-> settled

The bill-level status is never set directly by callers. It is derived from
the payment flags after every write:
- everyone paid and not settled  -> settled
- someone unpaid and settled     -> finalized
- anything else                  -> unchanged

``draft`` is only assigned at creation time; nothing here moves a bill back
into it.

All functions are pure. They return new Bill objects plus a description of
the edge that was taken, and the orchestrator decides which side effects
that edge needs.
"""

from typing import Union

from finance_engine.errors import ConflictError, ValidationError
from finance_engine.models.bill import (
    Bill,
    BillStatus,
    PaymentState,
    SettlementTransition,
)


def parse_payment_state(value: Union[str, PaymentState]) -> PaymentState:
    """Accept ``paid`` / ``pending`` (any case); anything else is a ValidationError."""
    if isinstance(value, PaymentState):
        return value
    if isinstance(value, str):
        try:
            return PaymentState(value.strip().lower())
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid payment status {value!r}: expected 'paid' or 'pending'"
    )


def is_fully_paid(bill: Bill) -> bool:
    return all(bill.is_paid(p) for p in bill.participants)


def derive_bill_status(bill: Bill) -> BillStatus:
    """Bill status implied by the current payment flags."""
    all_paid = is_fully_paid(bill)
    if all_paid and bill.status != BillStatus.SETTLED:
        return BillStatus.SETTLED
    if not all_paid and bill.status == BillStatus.SETTLED:
        return BillStatus.FINALIZED
    return bill.status


def _payment_state(bill: Bill, participant_id: str) -> PaymentState:
    return PaymentState.PAID if bill.is_paid(participant_id) else PaymentState.PENDING


def apply_payment_status(
    bill: Bill,
    participant_id: str,
    state: Union[str, PaymentState],
) -> tuple[Bill, SettlementTransition]:
    """
    Set one participant's payment flag and re-derive the bill status.

    Raises:
        ValidationError: unknown participant, unknown state, or an attempt
            to mark the payer as pending.

    Setting a participant to the state they are already in is allowed and
    reports an unchanged transition, so callers can skip side effects.
    """
    state = parse_payment_state(state)

    if participant_id not in bill.participants:
        raise ValidationError(
            f"Participant {participant_id!r} is not part of this bill"
        )

    if participant_id == bill.paid_by and state == PaymentState.PENDING:
        raise ValidationError(
            "The payer is always settled and cannot be marked pending"
        )

    previous = _payment_state(bill, participant_id)
    status_before = bill.status

    updated = bill
    if participant_id != bill.paid_by:
        updated = bill.with_payment_status(participant_id, state == PaymentState.PAID)

    new_status = derive_bill_status(updated)
    if new_status != updated.status:
        updated = updated.with_status(new_status)

    transition = SettlementTransition(
        participant_id=participant_id,
        previous=previous,
        current=state,
        bill_status_before=status_before,
        bill_status_after=updated.status,
    )
    return updated, transition


def finalize(bill: Bill) -> Bill:
    """
    Move a draft bill to finalized.

    If everyone has already paid, the bill goes straight on to settled.
    """
    if bill.status != BillStatus.DRAFT:
        raise ConflictError(
            f"Only draft bills can be finalized (bill is {bill.status.value})"
        )
    finalized = bill.with_status(BillStatus.FINALIZED)
    settled_status = derive_bill_status(finalized)
    if settled_status != finalized.status:
        finalized = finalized.with_status(settled_status)
    return finalized
