"""
Grocery Manager — inventory ledger

The only writer of products.stock_quantity. Two write paths:

mutate_stock
    Exclusive: the product row is locked (SELECT ... FOR UPDATE) for the
    read-check-write and stays locked until the caller's transaction
    commits, so every reservation sees every earlier committed one.

mutate_catalog_fields
    Optimistic: name and price are written with a compare-and-swap on the
    product's version; a lost race is a ConcurrencyConflict.

Each attempt runs inside a SAVEPOINT so the retry policy can roll back a
failed attempt without losing the rest of the caller's transaction.
"""

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from . import repository
from .cache import ProductCache
from .errors import ConcurrencyConflict, InsufficientStock, ProductNotFound
from .models import Product, utcnow
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

# lock_not_available, serialization_failure, deadlock_detected
_CONTENTION_SQLSTATES = {"55P03", "40001", "40P01"}


def is_contention(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONTENTION_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


@asynccontextmanager
async def contention_as_conflict(product_code: str):
    try:
        yield
    except DBAPIError as exc:
        if is_contention(exc):
            raise ConcurrencyConflict(
                f"Product {product_code} is locked by another transaction"
            ) from exc
        raise


class InventoryLedger:
    def __init__(
        self,
        retry: RetryPolicy,
        cache: ProductCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.retry = retry
        self.cache = cache
        self._clock = clock

    async def mutate_stock(
        self,
        session: AsyncSession,
        product_code: str,
        compute: Callable[[Product], int],
    ) -> Product:
        """
        Lock the active product, derive its new stock from the locked
        snapshot and write it. compute may raise to abort the change.
        """

        async def attempt() -> Product:
            async with contention_as_conflict(product_code), session.begin_nested():
                product = await repository.lock_active_product(session, product_code)
                if product is None:
                    raise ProductNotFound(product_code)
                quantity = compute(product)
                await repository.set_stock_quantity(
                    session, product_code, quantity, self._clock()
                )
                return product.model_copy(update={"stock_quantity": quantity})

        updated = await self.retry.call(attempt)
        await self.cache.evict(product_code)
        return updated

    async def reserve(
        self, session: AsyncSession, product_code: str, quantity: int
    ) -> Product:
        if quantity <= 0:
            raise ValueError(
                f"Requested quantity must be greater than zero for product: {product_code}"
            )

        def take(product: Product) -> int:
            if product.stock_quantity < quantity:
                raise InsufficientStock(product.code, product.stock_quantity, quantity)
            return product.stock_quantity - quantity

        product = await self.mutate_stock(session, product_code, take)
        logger.info(
            "Reserved %s units of product %s. Current stock: %s",
            quantity,
            product_code,
            product.stock_quantity,
        )
        return product

    async def release(
        self, session: AsyncSession, product_code: str, quantity: int
    ) -> None:
        if quantity <= 0:
            raise ValueError(
                f"Quantity to release must be greater than zero for product: {product_code}"
            )
        product = await self.mutate_stock(
            session, product_code, lambda p: p.stock_quantity + quantity
        )
        logger.info(
            "Released %s units of product %s. Current stock: %s",
            quantity,
            product_code,
            product.stock_quantity,
        )

    async def set_stock(
        self, session: AsyncSession, product_code: str, quantity: int
    ) -> Product:
        """Catalog stock correction, under the same lock as reservations."""
        if quantity < 0:
            raise ValueError("Stock quantity must be non-negative")
        return await self.mutate_stock(session, product_code, lambda p: quantity)

    async def mutate_catalog_fields(
        self,
        session: AsyncSession,
        product_code: str,
        name: str,
        price_per_unit: Decimal,
    ) -> Product:
        async def attempt() -> Product:
            async with contention_as_conflict(product_code), session.begin_nested():
                current = await repository.get_product(session, product_code)
                if current is None or current.archived:
                    raise ProductNotFound(product_code)
                swapped = await repository.update_catalog_fields(
                    session,
                    product_code,
                    current.version,
                    name,
                    price_per_unit,
                    self._clock(),
                )
                if not swapped:
                    raise ConcurrencyConflict(
                        f"Product {product_code} was modified concurrently"
                    )
                return current.model_copy(
                    update={
                        "name": name,
                        "price_per_unit": price_per_unit,
                        "version": current.version + 1,
                    }
                )

        updated = await self.retry.call(attempt)
        await self.cache.evict(product_code)
        return updated
