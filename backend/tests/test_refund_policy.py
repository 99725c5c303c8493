from decimal import Decimal

import pytest

from returnsdesk.core.errors import InvalidInput
from returnsdesk.services.refund_policy import refund_cap, resolve_refund_amount


def test_omitted_amount_defaults_to_order_total() -> None:
    assert resolve_refund_amount(Decimal("99.90"), None) == Decimal("99.90")
    assert resolve_refund_amount(Decimal("99.90"), "") == Decimal("99.90")


def test_amount_is_rounded_to_cents() -> None:
    assert resolve_refund_amount(Decimal("10"), "3.335") == Decimal("3.34")
    assert resolve_refund_amount(Decimal("10"), 0) == Decimal("0.00")


def test_uncapped_policy_accepts_any_non_negative_amount() -> None:
    assert resolve_refund_amount(Decimal("10.00"), Decimal("250.00"), max_ratio=None) == Decimal("250.00")


def test_negative_or_non_numeric_amount_is_invalid() -> None:
    with pytest.raises(InvalidInput):
        resolve_refund_amount(Decimal("10.00"), Decimal("-0.01"))
    with pytest.raises(InvalidInput):
        resolve_refund_amount(Decimal("10.00"), "ten")
    with pytest.raises(InvalidInput):
        resolve_refund_amount(Decimal("10.00"), "NaN")


def test_cap_is_order_total_times_ratio() -> None:
    assert refund_cap(Decimal("80.00"), max_ratio=None) is None
    assert refund_cap(Decimal("80.00"), max_ratio=0.5) == Decimal("40.00")
    assert resolve_refund_amount(Decimal("80.00"), "40.00", max_ratio=0.5) == Decimal("40.00")
    with pytest.raises(InvalidInput) as exc:
        resolve_refund_amount(Decimal("80.00"), "40.01", max_ratio=0.5)
    assert "40.00" in exc.value.message
