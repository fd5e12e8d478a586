"""Decimal helpers for monetary amounts (2 places, half-up)."""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(amount) -> Decimal:
    """Coerce *amount* to a 2-place Decimal.

    Floats are converted through ``str`` so ``0.1`` becomes ``0.10`` rather
    than its binary expansion. ``None`` counts as zero.
    """
    if amount is None:
        return ZERO
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a monetary amount: {amount!r}") from exc
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def money_sum(amounts) -> Decimal:
    return to_money(sum((to_money(a) for a in amounts), ZERO))
