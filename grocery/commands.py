"""
Grocery Manager — order lifecycle (write side)

Every command runs in one session and one transaction. Reservations for a
new order and the order row are committed together or not at all.

Status changes go through repository.transition_status, a check-and-set
from PENDING, so an order leaves PENDING exactly once no matter whether
pay, cancel, a lazy expiry or the sweeper gets there first. Stock is only
released by whoever wins that check-and-set.

Lazy expiry has two outcomes: the expiry itself is committed by the
transaction block, and OrderExpired is raised to the caller only after
that commit.
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import queries, repository
from .config import ExpirationSettings
from .errors import InvalidOrderStatus, OrderExpired
from .ledger import InventoryLedger
from .models import (
    Order,
    OrderItem,
    OrderStatus,
    calculate_total_amount,
    calculate_total_price,
    utcnow,
)

logger = logging.getLogger(__name__)


class OrderLifecycle:
    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: InventoryLedger,
        settings: ExpirationSettings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.ledger = ledger
        self.settings = settings
        self._clock = clock

    # ── Commands ─────────────────────────────────

    async def create_order(self, items: Sequence[tuple[str, int]]) -> Order:
        """
        Reserve stock for every item in order, then persist a PENDING order.

        A failing item aborts the transaction, which undoes the
        reservations already made for earlier items.
        """
        if not items:
            raise ValueError("Order must contain at least one item")

        order_items: list[OrderItem] = []
        async with self._session_factory() as session:
            async with session.begin():
                for product_code, quantity in items:
                    try:
                        product = await self.ledger.reserve(session, product_code, quantity)
                    except Exception as exc:
                        logger.error(
                            "Error while reserving %s units in stock for product %s: %s. "
                            "Rolling back order creation.",
                            quantity,
                            product_code,
                            exc,
                        )
                        raise
                    order_items.append(
                        OrderItem(
                            product_code=product_code,
                            quantity=quantity,
                            unit_price=product.price_per_unit,
                            total_price=calculate_total_price(quantity, product.price_per_unit),
                        )
                    )

                now = self._clock()
                order = await repository.insert_order(
                    session,
                    code=str(uuid4()),
                    total_amount=calculate_total_amount(order_items),
                    expires_at=now + self.settings.order_ttl,
                    items=order_items,
                    now=now,
                )

        await self._evict(code for code, _ in items)
        logger.info(
            "Created order with id: %s, code: %s, totalAmount: %s",
            order.id,
            order.code,
            order.total_amount,
        )
        return order

    async def pay_order(self, code: str) -> Order:
        async with self._session_factory() as session:
            async with session.begin():
                order = await queries.get_order_by_code(session, code)
                expired = await self._check_expiration(session, order, "Cannot pay expired order")
                if not expired:
                    order = await self._transition(session, order, OrderStatus.PAID, "paid")

        if expired:
            await self._evict(item.product_code for item in order.items)
            raise OrderExpired(f"Order {code} has expired. Cannot pay expired order")

        logger.info("Paid order with code: %s", code)
        return order

    async def cancel_order(self, code: str) -> Order:
        async with self._session_factory() as session:
            async with session.begin():
                order = await queries.get_order_by_code(session, code)
                expired = await self._check_expiration(
                    session, order, "Cannot cancel expired order"
                )
                if not expired:
                    order = await self._transition(
                        session, order, OrderStatus.CANCELED, "canceled"
                    )
                    await self._release_items(session, order)

        await self._evict(item.product_code for item in order.items)
        if expired:
            raise OrderExpired(f"Order {code} has expired. Cannot cancel expired order")

        logger.info("Canceled order with code: %s", code)
        return order

    async def expire_order(self, order_id: int) -> bool:
        """
        Expire one order in its own transaction.

        The order is reloaded and its eligibility checked again, so a
        snapshot taken earlier by the caller may be stale. Returns False
        when the order is gone, not overdue or already out of PENDING;
        nothing is released in that case.
        """
        async with self._session_factory() as session:
            async with session.begin():
                order = await repository.get_order_by_id(session, order_id)
                if order is None or not order.should_expire(self._clock()):
                    return False
                expired = await self._expire(session, order)
        if expired:
            await self._evict(item.product_code for item in order.items)
        return expired

    async def get_order_by_code(self, code: str) -> Order:
        async with self._session_factory() as session:
            return await queries.get_order_by_code(session, code)

    # ── Internals ────────────────────────────────

    async def _check_expiration(
        self, session: AsyncSession, order: Order, error_msg: str
    ) -> bool:
        """
        True when this call expired the order; the caller commits and then
        raises OrderExpired. Raises directly when there is nothing to commit.
        """
        if order.status is OrderStatus.EXPIRED:
            raise OrderExpired(f"Order {order.code} has already expired. {error_msg}")
        if not order.should_expire(self._clock()):
            return False
        if await self._expire(session, order):
            return True

        status = await repository.get_order_status(session, order.id)
        if status is OrderStatus.EXPIRED:
            raise OrderExpired(f"Order {order.code} has already expired. {error_msg}")
        raise InvalidOrderStatus(
            f"Order {order.code} is no longer pending. Current status: {status.value}"
        )

    async def _expire(self, session: AsyncSession, order: Order) -> bool:
        won = await repository.transition_status(
            session, order.id, OrderStatus.PENDING, OrderStatus.EXPIRED, self._clock()
        )
        if not won:
            logger.info("Order %s already left PENDING, skipping expiry", order.code)
            return False
        await self._release_items(session, order)
        logger.info("Expired order with code: %s", order.code)
        return True

    async def _transition(
        self, session: AsyncSession, order: Order, target: OrderStatus, verb: str
    ) -> Order:
        if order.status.is_terminal:
            raise InvalidOrderStatus(
                f"Order {order.code} cannot be {verb}. Current status: {order.status.value}"
            )
        now = self._clock()
        won = await repository.transition_status(
            session, order.id, OrderStatus.PENDING, target, now
        )
        if not won:
            status = await repository.get_order_status(session, order.id)
            raise InvalidOrderStatus(
                f"Order {order.code} cannot be {verb}. Current status: {status.value}"
            )
        return order.model_copy(update={"status": target, "updated_at": now})

    async def _release_items(self, session: AsyncSession, order: Order) -> None:
        for item in order.items:
            try:
                await self.ledger.release(session, item.product_code, item.quantity)
            except Exception as exc:
                logger.error(
                    "Error while releasing %s units of product %s for order %s: %s",
                    item.quantity,
                    item.product_code,
                    order.code,
                    exc,
                )
                raise

    async def _evict(self, product_codes: Iterable[str]) -> None:
        for code in set(product_codes):
            await self.ledger.cache.evict(code)
