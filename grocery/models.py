"""
Grocery Manager — domain snapshots

Immutable views of rows read from the store. Mutations never go through
these objects: stock changes go through the ledger and order status
changes go through the guarded check-and-set in the repository.

Order state machine:
    PENDING → PAID      (payment)
    PENDING → CANCELED  (cancellation, stock released)
    PENDING → EXPIRED   (lazy or scheduled expiration, stock released)
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict

CENT = Decimal("0.01")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.PAID)
FINISHED_STATUSES = (OrderStatus.CANCELED, OrderStatus.EXPIRED)


class Product(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    stock_quantity: int
    price_per_unit: Decimal
    archived: bool = False
    version: int = 0


class OrderItem(BaseModel):
    """A line of an order. Refers to its product by code only."""

    model_config = ConfigDict(frozen=True)

    product_code: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    status: OrderStatus
    total_amount: Decimal
    expires_at: datetime
    created_at: datetime
    updated_at: datetime | None = None
    items: tuple[OrderItem, ...] = ()

    def is_overdue(self, now: datetime) -> bool:
        return now > self.expires_at

    def should_expire(self, now: datetime) -> bool:
        return not self.status.is_terminal and self.is_overdue(now)


def calculate_total_price(quantity: int, unit_price: Decimal) -> Decimal:
    """unit_price × quantity, rounded half-up to cents."""
    if quantity is None or unit_price is None:
        raise ValueError("Quantity and unit price must not be None")
    return (unit_price * Decimal(quantity)).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_total_amount(items) -> Decimal:
    """Sum of item totals, skipping missing and non-positive ones."""
    total = Decimal("0.00")
    for item in items:
        if item.total_price is None or item.total_price <= 0:
            continue
        total += item.total_price
    return total.quantize(CENT)
