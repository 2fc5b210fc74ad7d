from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Tuple, Union

from creatorpay.core.errors import ValidationError

CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Quantize any numeric input to 2 decimal places, half-up."""
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not d.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Number) -> str:
    return f"{to_money(value):.2f}"


def compute_payout_split(gross: Number, fee_rate: Decimal) -> Tuple[Decimal, Decimal, Decimal]:
    """Return ``(gross, fee, net)`` rounded half-up to cents, with ``net = gross - fee``."""
    gross = to_money(gross)
    fee = (gross * fee_rate).quantize(CENT, rounding=ROUND_HALF_UP)
    return gross, fee, gross - fee
