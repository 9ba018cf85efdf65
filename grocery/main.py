"""
Grocery Manager — FastAPI entry point

Product catalog and orders with time-limited stock reservations. Orders
hold their stock while PENDING; paying keeps it, cancelling or expiring
gives it back. A background sweeper expires orders nobody came back to.

┌─────────┐  HTTP  ┌──────────────────┐      ┌───────────────────┐
│ Clients │ ─────▶ │ catalog / orders │ ───▶ │  InventoryLedger  │
└─────────┘        └──────────────────┘      │ (row lock, retry) │
                                             └─────────┬─────────┘
┌───────────────────┐                        ┌─────────▼─────────┐
│ ExpirationSweeper │ ─────────────────────▶ │    Postgres DB    │
│  (asyncio task)   │                        └───────────────────┘
└───────────────────┘
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .cache import create_cache
from .catalog import ProductCatalog
from .commands import OrderLifecycle
from .config import Settings
from .database import create_engine, create_session_factory, init_models
from .errors import (
    ConcurrencyConflict,
    GroceryError,
    InsufficientStock,
    InvalidOrderStatus,
    OrderExpired,
    OrderNotFound,
    ProductAlreadyExists,
    ProductDeletionConflict,
    ProductNotFound,
)
from .ledger import InventoryLedger
from .models import OrderStatus, utcnow
from .retry import RetryPolicy
from .sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the store, cache and services, then start the expiration sweeper."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database)
    await init_models(engine)
    session_factory = create_session_factory(engine)

    cache = create_cache(settings.cache)
    # snapshots left by an earlier run may predate writes made while it was down
    await cache.clear()
    ledger = InventoryLedger(RetryPolicy(settings.retry), cache)
    lifecycle = OrderLifecycle(session_factory, ledger, settings.expiration)
    app.state.catalog = ProductCatalog(session_factory, ledger, cache)
    app.state.lifecycle = lifecycle

    shutdown_event = asyncio.Event()
    sweeper_task = None
    if settings.expiration.enabled:
        sweeper = ExpirationSweeper(session_factory, lifecycle, settings.expiration)
        sweeper_task = asyncio.create_task(sweeper.run_forever(shutdown_event))
    yield
    shutdown_event.set()
    if sweeper_task is not None:
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass
    await cache.close()
    await engine.dispose()


# ── Request / Response Models ────────────────────


class ProductCreateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    stock_quantity: int = Field(ge=0)
    price_per_unit: Decimal = Field(ge=Decimal("0.01"), max_digits=17, decimal_places=2)


class ProductUpdateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    stock_quantity: int | None = Field(default=None, ge=0)
    price_per_unit: Decimal = Field(ge=Decimal("0.01"), max_digits=17, decimal_places=2)


class ProductResponse(BaseModel):
    code: str
    name: str
    stock_quantity: int
    price_per_unit: Decimal
    archived: bool


class OrderItemRequest(BaseModel):
    product_code: str = Field(min_length=1)
    quantity: int = Field(ge=1)


class CreateOrderRequest(BaseModel):
    items: list[OrderItemRequest] = Field(min_length=1)


class OrderItemResponse(BaseModel):
    product_code: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderResponse(BaseModel):
    code: str
    status: OrderStatus
    total_amount: Decimal
    expires_at: datetime
    items: list[OrderItemResponse]


# ── Error Mapping ────────────────────────────────

# checked in order, first isinstance match wins
_ERROR_RESPONSES: list[tuple[type[GroceryError], int, str]] = [
    (ProductNotFound, status.HTTP_404_NOT_FOUND, "Product not found"),
    (OrderNotFound, status.HTTP_404_NOT_FOUND, "Order not found"),
    (ProductAlreadyExists, status.HTTP_409_CONFLICT, "Product already exists"),
    (ProductDeletionConflict, status.HTTP_409_CONFLICT, "Product deletion error"),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT, "Concurrent Modification"),
    (InsufficientStock, status.HTTP_400_BAD_REQUEST, "Insufficient stock"),
    (InvalidOrderStatus, status.HTTP_400_BAD_REQUEST, "Invalid order status"),
    (OrderExpired, status.HTTP_400_BAD_REQUEST, "Order expired"),
]


def _error_body(status_code: int, error: str, message: str) -> dict:
    return {
        "status": status_code,
        "error": error,
        "message": message,
        "timestamp": utcnow().isoformat(),
    }


async def handle_grocery_error(request: Request, exc: GroceryError) -> JSONResponse:
    for kind, status_code, error in _ERROR_RESPONSES:
        if isinstance(exc, kind):
            break
    else:
        status_code, error = status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error"

    message = str(exc)
    if isinstance(exc, ConcurrencyConflict):
        logger.error("Concurrency failure: %s", exc)
        message = "The resource was modified by another user. Please refresh and try again."
    return JSONResponse(status_code=status_code, content=_error_body(status_code, error, message))


async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    code = status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=_error_body(code, "Bad Request", str(exc)))


# ── Product Endpoints ────────────────────────────

products_router = APIRouter(prefix="/api/v1/products", tags=["products"])


@products_router.get("", response_model=list[ProductResponse])
async def list_products(request: Request, only_active: bool = True):
    """Products sorted by name. only_active=false includes archived ones."""
    return await request.app.state.catalog.list_products(only_active)


@products_router.get("/{code}", response_model=ProductResponse)
async def get_product(request: Request, code: str):
    return await request.app.state.catalog.get_product_by_code(code)


@products_router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(request: Request, req: ProductCreateRequest):
    return await request.app.state.catalog.create_product(
        req.code, req.name, req.stock_quantity, req.price_per_unit
    )


@products_router.put("/{code}", response_model=ProductResponse)
async def update_product(request: Request, code: str, req: ProductUpdateRequest):
    """Only active products can be updated."""
    return await request.app.state.catalog.update_product(
        code, req.name, req.price_per_unit, req.stock_quantity
    )


@products_router.delete("/{code}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(request: Request, code: str):
    """Archived when the product has order history, removed otherwise."""
    await request.app.state.catalog.delete_product(code)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@products_router.get("/{code}/has-active-orders")
async def has_active_orders(request: Request, code: str) -> bool:
    return await request.app.state.catalog.has_active_orders(code)


@products_router.get("/{code}/has-finished-orders")
async def has_finished_orders(request: Request, code: str) -> bool:
    return await request.app.state.catalog.has_finished_orders(code)


# ── Order Endpoints ──────────────────────────────

orders_router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


@orders_router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(request: Request, req: CreateOrderRequest):
    """Reserves stock for every item; nothing is reserved if one item fails."""
    items = [(item.product_code, item.quantity) for item in req.items]
    return await request.app.state.lifecycle.create_order(items)


@orders_router.get("/{code}", response_model=OrderResponse)
async def get_order(request: Request, code: str):
    return await request.app.state.lifecycle.get_order_by_code(code)


@orders_router.post("/{code}/pay", response_model=OrderResponse)
async def pay_order(request: Request, code: str):
    return await request.app.state.lifecycle.pay_order(code)


@orders_router.post("/{code}/cancel", response_model=OrderResponse)
async def cancel_order(request: Request, code: str):
    return await request.app.state.lifecycle.cancel_order(code)


def create_app(settings: Settings | None = None) -> FastAPI:
    app = FastAPI(title="Grocery Manager", lifespan=lifespan)
    app.state.settings = settings or Settings.from_env()
    app.include_router(products_router)
    app.include_router(orders_router)
    app.add_exception_handler(GroceryError, handle_grocery_error)
    app.add_exception_handler(ValueError, handle_value_error)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "grocery-manager"}

    return app


app = create_app()
