"""
Money/Split Calculator

Pure functions that turn a bill's items, tax and tip into per-participant
splits. No I/O, no clock, no randomness: identical input always yields
identical output, which is what makes a retried bill creation safe.

DESIGN DECISION: Shares are computed exactly (as Fractions) and converted to
cents once, at the very end, by largest-remainder allocation:
1. Floor every exact share to the cent
2. Hand the leftover cents, one each, to the largest fractional remainders
3. Break remainder ties by participant order

The result is that splits always add up to the amount being divided, to the
cent. There is no tolerance anywhere.
"""

from decimal import Decimal
from fractions import Fraction
from typing import Optional

from finance_engine.errors import ValidationError
from finance_engine.models.bill import BillItem, NewBill, SplitMode, SplitResult
from finance_engine.models.money import CENT, ZERO, to_money


HUNDRED = Decimal("100")


# =============================================================================
# ALLOCATION
# =============================================================================

def _to_cents(amount: Decimal) -> int:
    return int(to_money(amount) / CENT)


def _from_cents(cents: int) -> Decimal:
    return to_money(Decimal(cents) * CENT)


def allocate_cents(
    shares: list[tuple[str, Fraction]],
    total: Decimal,
) -> dict[str, Decimal]:
    """
    Convert exact shares into cent amounts that sum to ``total`` exactly.

    ``shares`` is an ordered list of (participant, exact amount) pairs whose
    exact sum equals ``total``. Order matters only for tie-breaking.
    """
    if not shares:
        return {}

    total_cents = _to_cents(total)
    floors = []
    remainders = []
    for index, (participant_id, share) in enumerate(shares):
        cents = share * 100
        floor = cents.numerator // cents.denominator
        floors.append(floor)
        remainders.append((cents - floor, index))

    leftover = total_cents - sum(floors)
    # Largest remainder first; earlier participant wins a tie
    ranked = sorted(remainders, key=lambda r: (-r[0], r[1]))
    for _, index in ranked[:max(leftover, 0)]:
        floors[index] += 1

    return {
        participant_id: _from_cents(floors[index])
        for index, (participant_id, _) in enumerate(shares)
    }


# =============================================================================
# ITEMIZED SPLIT
# =============================================================================

def _check_members(keys, participants: list[str], what: str) -> None:
    unknown = [k for k in keys if k not in participants]
    if unknown:
        raise ValidationError(
            f"{what} references participants not on the bill: {sorted(set(unknown))}"
        )


def compute_split(
    items: list[BillItem],
    tax_percentage: Decimal,
    tip: Decimal,
    participants: list[str],
) -> SplitResult:
    """
    Compute subtotal, tax, total and each participant's split.

    Each item is shared evenly between its participants. Tax and tip are
    spread over participants in proportion to their item shares. Items
    nobody is assigned to count toward the subtotal only, and when no item
    is assigned at all nothing is distributed: every split is zero.

    Every participant in ``participants`` gets an entry, zero if they are on
    no item.
    """
    if tax_percentage is None or Decimal(str(tax_percentage)) < 0:
        raise ValidationError("Tax percentage must be zero or positive")
    tip = to_money(tip or ZERO)
    if tip < 0:
        raise ValidationError("Tip must be zero or positive")

    subtotal = to_money(sum((to_money(i.amount) for i in items), ZERO))
    tax = to_money(subtotal * Decimal(str(tax_percentage)) / HUNDRED)
    total = subtotal + tax + tip

    item_shares: dict[str, Fraction] = {p: Fraction(0) for p in participants}
    assigned_subtotal = ZERO
    for item in items:
        assigned = list(dict.fromkeys(item.participant_ids))
        _check_members(assigned, participants, f"Item {item.name!r}")
        if not assigned:
            continue
        assigned_subtotal += to_money(item.amount)
        portion = Fraction(to_money(item.amount)) / len(assigned)
        for participant_id in assigned:
            item_shares[participant_id] += portion

    share_sum = sum(item_shares.values(), Fraction(0))
    if share_sum == 0:
        splits = {p: ZERO for p in participants}
    else:
        extra = Fraction(tax + tip)
        exact = [
            (p, share + extra * share / share_sum)
            for p, share in item_shares.items()
        ]
        splits = allocate_cents(exact, assigned_subtotal + tax + tip)

    return SplitResult(
        subtotal=subtotal,
        tax=tax,
        tip=tip,
        total=total,
        splits=splits,
    )


# =============================================================================
# WHOLE-BILL SPLIT MODES
# =============================================================================

def split_equally(total: Decimal, participants: list[str]) -> dict[str, Decimal]:
    """Divide ``total`` evenly; leftover cents go to the earliest participants."""
    if not participants:
        raise ValidationError("At least one participant is required")
    share = Fraction(to_money(total)) / len(participants)
    return allocate_cents([(p, share) for p in participants], total)


def split_by_percentage(
    total: Decimal,
    percentages: dict[str, Decimal],
    participants: list[str],
) -> dict[str, Decimal]:
    """
    Divide ``total`` by percentage.

    Percentages must be non-negative and add up to exactly 100.
    Participants without a percentage owe nothing.
    """
    _check_members(percentages, participants, "Percentage split")
    if any(Decimal(str(v)) < 0 for v in percentages.values()):
        raise ValidationError("Percentages must be zero or positive")
    if sum((Decimal(str(v)) for v in percentages.values()), Decimal("0")) != HUNDRED:
        raise ValidationError("Percentages must add up to 100")

    exact_total = Fraction(to_money(total))
    shares = [
        (p, exact_total * Fraction(Decimal(str(percentages.get(p, 0)))) / 100)
        for p in participants
    ]
    return allocate_cents(shares, total)


def validate_custom_split(
    total: Decimal,
    amounts: dict[str, Decimal],
    participants: list[str],
) -> dict[str, Decimal]:
    """
    Accept caller-chosen amounts if they add up to ``total`` exactly.

    Returns the amounts for every participant (zero when not given).
    """
    _check_members(amounts, participants, "Custom split")
    normalized = {p: to_money(amounts.get(p, ZERO)) for p in participants}
    if any(v < 0 for v in normalized.values()):
        raise ValidationError("Custom split amounts must be zero or positive")

    allocated = sum(normalized.values(), ZERO)
    if allocated != to_money(total):
        raise ValidationError(
            f"Custom split amounts add up to {allocated}, expected {to_money(total)}"
        )
    return normalized


def split_new_bill(new_bill: NewBill) -> SplitResult:
    """
    Compute the amounts of a bill creation request in its split mode.

    Subtotal, tax and total always come from the items; only the way the
    total is divided depends on the mode.
    """
    result = compute_split(
        items=new_bill.items,
        tax_percentage=new_bill.tax_percentage,
        tip=new_bill.tip,
        participants=new_bill.participants,
    )

    splits: Optional[dict[str, Decimal]] = None
    if new_bill.split_mode == SplitMode.EQUAL:
        splits = split_equally(result.total, new_bill.participants)
    elif new_bill.split_mode == SplitMode.PERCENTAGE:
        splits = split_by_percentage(
            result.total, new_bill.percentages, new_bill.participants
        )
    elif new_bill.split_mode == SplitMode.CUSTOM:
        splits = validate_custom_split(
            result.total, new_bill.custom_splits, new_bill.participants
        )

    if splits is None:
        return result
    return result.model_copy(update={"splits": splits})
