"""
Grocery Manager — product catalog

Plain CRUD around the products table. Stock never changes here directly:
a stock correction in update_product goes through the ledger under the
same lock as reservations.

Deletion rules:
    active orders (PENDING / PAID)      → ProductDeletionConflict
    only finished orders (CANCELED / EXPIRED) → archived, code stays taken
    no orders at all                    → row deleted, code free again
"""

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from . import queries, repository
from .cache import ProductCache
from .errors import ProductAlreadyExists, ProductDeletionConflict, ProductNotFound
from .ledger import InventoryLedger, contention_as_conflict
from .models import ACTIVE_STATUSES, FINISHED_STATUSES, Product, utcnow

logger = logging.getLogger(__name__)


class ProductCatalog:
    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: InventoryLedger,
        cache: ProductCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.ledger = ledger
        self.cache = cache
        self._clock = clock

    # ── Commands ─────────────────────────────────

    async def create_product(
        self, code: str, name: str, stock_quantity: int, price_per_unit: Decimal
    ) -> Product:
        """Archived codes count as taken."""
        if stock_quantity < 0:
            raise ValueError("Stock quantity must be non-negative")
        async with self._session_factory() as session:
            async with session.begin():
                if await repository.product_exists(session, code):
                    raise ProductAlreadyExists(code)
                try:
                    product = await repository.insert_product(
                        session, code, name, stock_quantity, price_per_unit, self._clock()
                    )
                except IntegrityError as exc:
                    # a concurrent create won the unique code
                    raise ProductAlreadyExists(code) from exc
        logger.info("Created product with code: %s", code)
        return product

    async def update_product(
        self,
        code: str,
        name: str,
        price_per_unit: Decimal,
        stock_quantity: int | None = None,
    ) -> Product:
        async with self._session_factory() as session:
            async with session.begin():
                product = await self.ledger.mutate_catalog_fields(
                    session, code, name, price_per_unit
                )
                if stock_quantity is not None:
                    stocked = await self.ledger.set_stock(session, code, stock_quantity)
                    product = product.model_copy(
                        update={"stock_quantity": stocked.stock_quantity}
                    )
        await self.cache.evict(code)
        logger.info("Updated product with code: %s", code)
        return product

    async def delete_product(self, code: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                # the row lock orders this delete against in-flight reservations
                async with contention_as_conflict(code):
                    locked = await repository.lock_active_product(session, code)
                if locked is None:
                    raise ProductNotFound(code)
                if await repository.product_has_orders_in(session, code, ACTIVE_STATUSES):
                    raise ProductDeletionConflict(code)
                archive = await repository.product_has_orders_in(
                    session, code, FINISHED_STATUSES
                )
                if archive:
                    await repository.archive_product(session, code, self._clock())
                else:
                    await repository.delete_product(session, code)
        await self.cache.evict(code)
        if archive:
            logger.info("Archived product with code: %s", code)
        else:
            logger.info("Deleted product with code: %s", code)

    # ── Queries ──────────────────────────────────

    async def get_product_by_code(self, code: str) -> Product:
        async with self._session_factory() as session:
            return await queries.get_product_by_code(session, self.cache, code)

    async def list_products(self, only_active: bool = True) -> list[Product]:
        async with self._session_factory() as session:
            return await queries.list_products(session, only_active)

    async def has_active_orders(self, code: str) -> bool:
        return await self._has_orders_in(code, ACTIVE_STATUSES)

    async def has_finished_orders(self, code: str) -> bool:
        return await self._has_orders_in(code, FINISHED_STATUSES)

    async def _has_orders_in(self, code: str, statuses) -> bool:
        async with self._session_factory() as session:
            if not await repository.product_exists(session, code):
                raise ProductNotFound(code)
            return await repository.product_has_orders_in(session, code, statuses)
