"""
Grocery Manager — table definitions

products.code is unique across archived rows too, so an archived code can
never be reused. order_items keep a plain reference to products.code and
are removed together with their order.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
)

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(50), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("stock_quantity", Integer, nullable=False),
    Column("price_per_unit", Numeric(15, 2), nullable=False),
    Column("archived", Boolean, nullable=False, default=False),
    Column("version", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=True),
    CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(36), nullable=False, unique=True),
    Column("status", String(16), nullable=False),
    Column("total_amount", Numeric(15, 2), nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("version", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=True),
    Index("ix_orders_status", "status"),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "order_id",
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "product_code",
        String(50),
        ForeignKey("products.code"),
        nullable=False,
        index=True,
    ),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Numeric(15, 2), nullable=False),
    Column("total_price", Numeric(15, 2), nullable=False),
    CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
)
