"""Tests for price arithmetic and the order status helpers."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from grocery.models import (
    Order,
    OrderItem,
    OrderStatus,
    calculate_total_amount,
    calculate_total_price,
)


def _item(total: str | None) -> OrderItem:
    return OrderItem.model_construct(
        product_code="P1",
        quantity=1,
        unit_price=Decimal("1.00"),
        total_price=Decimal(total) if total is not None else None,
    )


def test_total_price_rounds_half_up_to_cents():
    assert calculate_total_price(3, Decimal("3.335")) == Decimal("10.01")
    assert calculate_total_price(1, Decimal("0.005")) == Decimal("0.01")
    assert calculate_total_price(2, Decimal("1.50")) == Decimal("3.00")


def test_items_are_rounded_before_summing():
    """3 × 3.335 and 2 × 10.00 must give 30.01, not a re-rounded sum."""
    items = [
        OrderItem(
            product_code="A",
            quantity=3,
            unit_price=Decimal("3.335"),
            total_price=calculate_total_price(3, Decimal("3.335")),
        ),
        OrderItem(
            product_code="B",
            quantity=2,
            unit_price=Decimal("10.00"),
            total_price=calculate_total_price(2, Decimal("10.00")),
        ),
    ]
    assert calculate_total_amount(items) == Decimal("30.01")


def test_total_amount_skips_missing_and_non_positive_totals():
    items = [_item("5.00"), _item("0.00"), _item("-1.00"), _item(None), _item("2.25")]
    assert calculate_total_amount(items) == Decimal("7.25")


def test_total_price_rejects_none():
    with pytest.raises(ValueError):
        calculate_total_price(None, Decimal("1.00"))


def test_should_expire_only_pending_past_deadline():
    now = datetime(2024, 5, 1, 12, 0)
    order = Order(
        id=1,
        code="o-1",
        status=OrderStatus.PENDING,
        total_amount=Decimal("1.00"),
        expires_at=now,
        created_at=now - timedelta(minutes=30),
    )
    assert not order.should_expire(now)
    assert order.should_expire(now + timedelta(seconds=1))

    paid = order.model_copy(update={"status": OrderStatus.PAID})
    assert not paid.should_expire(now + timedelta(hours=1))
    assert paid.status.is_terminal
    assert not OrderStatus.PENDING.is_terminal
