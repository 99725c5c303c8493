from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from returnsdesk.core.errors import InvalidInput

_CENTS = Decimal("0.01")


def _to_money(value: object) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInput("Refund amount must be a number")
    if not amount.is_finite():
        raise InvalidInput("Refund amount must be a number")
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def refund_cap(order_total: Decimal, *, max_ratio: float | None) -> Decimal | None:
    if max_ratio is None:
        return None
    return (Decimal(str(order_total)) * Decimal(str(max_ratio))).quantize(_CENTS, rounding=ROUND_HALF_UP)


def resolve_refund_amount(order_total: Decimal, requested: object | None, *, max_ratio: float | None = None) -> Decimal:
    """Return the refund to record on approval.

    An omitted amount falls back to the order total. Admin overrides must be
    non-negative and, when ``max_ratio`` is set, no larger than
    ``order_total * max_ratio``.
    """
    amount = _to_money(order_total if requested is None or requested == "" else requested)
    if amount < 0:
        raise InvalidInput("Refund amount must not be negative")

    cap = refund_cap(order_total, max_ratio=max_ratio)
    if cap is not None and amount > cap:
        raise InvalidInput(f"Refund amount exceeds the allowed maximum of {cap}")
    return amount
