"""
Grocery Manager — SQL access

Statements only: no business rules, no commits. Callers own the
transaction. Two guarded writes live here:

- lock_active_product: SELECT ... FOR UPDATE on one product row
- transition_status / update_catalog_fields: compare-and-swap UPDATEs
  whose rowcount tells the caller whether it won
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, exists, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, OrderItem, OrderStatus, Product
from .schema import order_items, orders, products


def _to_product(row) -> Product:
    return Product(
        code=row.code,
        name=row.name,
        stock_quantity=row.stock_quantity,
        price_per_unit=row.price_per_unit,
        archived=row.archived,
        version=row.version,
    )


def _to_order(row, items: Iterable[OrderItem]) -> Order:
    return Order(
        id=row.id,
        code=row.code,
        status=OrderStatus(row.status),
        total_amount=row.total_amount,
        expires_at=row.expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        items=tuple(items),
    )


# ── Products ─────────────────────────────────────


async def get_product(session: AsyncSession, code: str) -> Product | None:
    """Archived products are returned too."""
    result = await session.execute(select(products).where(products.c.code == code))
    row = result.fetchone()
    return _to_product(row) if row else None


async def lock_active_product(session: AsyncSession, code: str) -> Product | None:
    result = await session.execute(
        select(products)
        .where(products.c.code == code, products.c.archived.is_(False))
        .with_for_update()
    )
    row = result.fetchone()
    return _to_product(row) if row else None


async def set_stock_quantity(
    session: AsyncSession, code: str, quantity: int, now: datetime
) -> None:
    await session.execute(
        update(products)
        .where(products.c.code == code)
        .values(stock_quantity=quantity, updated_at=now)
    )


async def update_catalog_fields(
    session: AsyncSession,
    code: str,
    expected_version: int,
    name: str,
    price_per_unit: Decimal,
    now: datetime,
) -> bool:
    result = await session.execute(
        update(products)
        .where(
            products.c.code == code,
            products.c.archived.is_(False),
            products.c.version == expected_version,
        )
        .values(
            name=name,
            price_per_unit=price_per_unit,
            version=products.c.version + 1,
            updated_at=now,
        )
    )
    return result.rowcount == 1


async def insert_product(
    session: AsyncSession,
    code: str,
    name: str,
    stock_quantity: int,
    price_per_unit: Decimal,
    now: datetime,
) -> Product:
    await session.execute(
        insert(products).values(
            code=code,
            name=name,
            stock_quantity=stock_quantity,
            price_per_unit=price_per_unit,
            archived=False,
            version=0,
            created_at=now,
        )
    )
    return Product(
        code=code,
        name=name,
        stock_quantity=stock_quantity,
        price_per_unit=price_per_unit,
    )


async def product_exists(
    session: AsyncSession, code: str, archived: bool | None = None
) -> bool:
    condition = products.c.code == code
    if archived is not None:
        condition = condition & (products.c.archived.is_(archived))
    result = await session.execute(select(exists().where(condition)))
    return bool(result.scalar())


async def list_products(session: AsyncSession, only_active: bool) -> list[Product]:
    stmt = select(products).order_by(products.c.name.asc(), products.c.code.asc())
    if only_active:
        stmt = stmt.where(products.c.archived.is_(False))
    result = await session.execute(stmt)
    return [_to_product(row) for row in result.fetchall()]


async def archive_product(session: AsyncSession, code: str, now: datetime) -> None:
    await session.execute(
        update(products)
        .where(products.c.code == code)
        .values(archived=True, version=products.c.version + 1, updated_at=now)
    )


async def delete_product(session: AsyncSession, code: str) -> None:
    await session.execute(delete(products).where(products.c.code == code))


async def product_has_orders_in(
    session: AsyncSession, code: str, statuses: Sequence[OrderStatus]
) -> bool:
    stmt = select(
        exists()
        .where(order_items.c.product_code == code)
        .where(order_items.c.order_id == orders.c.id)
        .where(orders.c.status.in_([s.value for s in statuses]))
    )
    result = await session.execute(stmt)
    return bool(result.scalar())


# ── Orders ───────────────────────────────────────


async def insert_order(
    session: AsyncSession,
    code: str,
    total_amount: Decimal,
    expires_at: datetime,
    items: Sequence[OrderItem],
    now: datetime,
) -> Order:
    result = await session.execute(
        insert(orders).values(
            code=code,
            status=OrderStatus.PENDING.value,
            total_amount=total_amount,
            expires_at=expires_at,
            version=0,
            created_at=now,
        )
    )
    order_id = result.inserted_primary_key[0]
    await session.execute(
        insert(order_items),
        [
            {
                "order_id": order_id,
                "product_code": item.product_code,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "total_price": item.total_price,
            }
            for item in items
        ],
    )
    return Order(
        id=order_id,
        code=code,
        status=OrderStatus.PENDING,
        total_amount=total_amount,
        expires_at=expires_at,
        created_at=now,
        items=tuple(items),
    )


async def _load_items(
    session: AsyncSession, order_ids: Sequence[int]
) -> dict[int, list[OrderItem]]:
    result = await session.execute(
        select(order_items)
        .where(order_items.c.order_id.in_(order_ids))
        .order_by(order_items.c.id)
    )
    by_order: dict[int, list[OrderItem]] = {order_id: [] for order_id in order_ids}
    for row in result.fetchall():
        by_order[row.order_id].append(
            OrderItem(
                product_code=row.product_code,
                quantity=row.quantity,
                unit_price=row.unit_price,
                total_price=row.total_price,
            )
        )
    return by_order


async def get_order_by_code(session: AsyncSession, code: str) -> Order | None:
    result = await session.execute(select(orders).where(orders.c.code == code))
    row = result.fetchone()
    if not row:
        return None
    items = await _load_items(session, [row.id])
    return _to_order(row, items[row.id])


async def get_order_by_id(session: AsyncSession, order_id: int) -> Order | None:
    found = await get_orders_by_ids(session, [order_id])
    return found[0] if found else None


async def get_orders_by_ids(session: AsyncSession, order_ids: Sequence[int]) -> list[Order]:
    if not order_ids:
        return []
    result = await session.execute(
        select(orders).where(orders.c.id.in_(order_ids)).order_by(orders.c.id)
    )
    rows = result.fetchall()
    items = await _load_items(session, [row.id for row in rows])
    return [_to_order(row, items[row.id]) for row in rows]


async def transition_status(
    session: AsyncSession,
    order_id: int,
    expected: OrderStatus,
    target: OrderStatus,
    now: datetime,
) -> bool:
    """Move an order from expected to target. False if someone got there first."""
    result = await session.execute(
        update(orders)
        .where(orders.c.id == order_id, orders.c.status == expected.value)
        .values(status=target.value, version=orders.c.version + 1, updated_at=now)
    )
    return result.rowcount == 1


async def get_order_status(session: AsyncSession, order_id: int) -> OrderStatus | None:
    result = await session.execute(select(orders.c.status).where(orders.c.id == order_id))
    status = result.scalar()
    return OrderStatus(status) if status else None


async def find_ids_to_expire(
    session: AsyncSession,
    lower: datetime,
    upper: datetime,
    statuses: Sequence[OrderStatus],
    limit: int,
) -> list[int]:
    """Ids of orders last touched within [lower, upper], oldest id first."""
    touched_at = func.coalesce(orders.c.updated_at, orders.c.created_at)
    result = await session.execute(
        select(orders.c.id)
        .where(touched_at.between(lower, upper))
        .where(orders.c.status.in_([s.value for s in statuses]))
        .order_by(orders.c.id)
        .limit(limit)
    )
    return list(result.scalars().all())
