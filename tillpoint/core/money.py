"""
Fixed-point money helpers. Amounts are Decimal quantized to cents.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from tillpoint.core.exceptions import ValidationError

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any, field: str = "amount") -> Decimal:
    """Convert ``value`` to a cent-quantized Decimal, rejecting floats' binary noise."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        if isinstance(value, float):
            value = repr(value)
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_optional_money(value: Optional[Any], field: str = "amount") -> Optional[Decimal]:
    return None if value is None else to_money(value, field)
