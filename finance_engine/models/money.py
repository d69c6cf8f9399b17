"""
Money representation.

DESIGN DECISION: Every monetary value in the engine is a Decimal
quantized to cents. Floats never enter the arithmetic, so sums of
splits can be compared with == instead of a tolerance.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from pydantic import AfterValidator

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce a number (or numeric string) to a Decimal rounded half-up to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


Money = Annotated[Decimal, AfterValidator(to_money)]
