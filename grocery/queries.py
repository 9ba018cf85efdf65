"""
Grocery Manager — read side

Plain lookups. Product lookups go through the read cache; orders are
always read from the store, and an overdue PENDING order is returned
as-is (expiry is only forced by pay / cancel and the sweeper).
"""

from sqlalchemy.ext.asyncio import AsyncSession

from . import repository
from .cache import ProductCache
from .errors import OrderNotFound, ProductNotFound
from .models import Order, Product


async def get_order_by_code(session: AsyncSession, code: str) -> Order:
    order = await repository.get_order_by_code(session, code)
    if order is None:
        raise OrderNotFound(code)
    return order


async def get_product_by_code(
    session: AsyncSession, cache: ProductCache, code: str
) -> Product:
    """Archived products are visible by code."""
    cached = await cache.get(code)
    if cached is not None:
        return cached
    product = await repository.get_product(session, code)
    if product is None:
        raise ProductNotFound(code)
    await cache.put(product)
    return product


async def list_products(session: AsyncSession, only_active: bool = True) -> list[Product]:
    return await repository.list_products(session, only_active)
