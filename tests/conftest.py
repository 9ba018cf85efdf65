"""Pytest fixtures: a file-backed SQLite store and the services wired on top of it."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from grocery import repository
from grocery.cache import LocalProductCache
from grocery.catalog import ProductCatalog
from grocery.commands import OrderLifecycle
from grocery.config import DatabaseSettings, ExpirationSettings, RetrySettings
from grocery.database import create_engine, create_session_factory, init_models
from grocery.ledger import InventoryLedger
from grocery.retry import RetryPolicy
from grocery.sweeper import ExpirationSweeper


class FakeClock:
    """Settable stand-in for utcnow()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0))


@pytest.fixture
def expiration_settings() -> ExpirationSettings:
    return ExpirationSettings(
        order_ttl=timedelta(minutes=30),
        threshold=timedelta(days=1),
        bottom_threshold=timedelta(minutes=35),
        batch_update_size=2,
        max_size=100,
    )


@pytest.fixture
def retry_settings() -> RetrySettings:
    return RetrySettings(max_attempts=3, initial_interval_ms=0, max_interval_ms=0)


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(
        DatabaseSettings(
            url=f"sqlite+aiosqlite:///{tmp_path / 'grocery.db'}",
            lock_timeout_ms=10000,
        )
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def cache() -> LocalProductCache:
    return LocalProductCache(ttl_seconds=600, max_size=100)


@pytest.fixture
def ledger(retry_settings, cache, clock) -> InventoryLedger:
    return InventoryLedger(RetryPolicy(retry_settings), cache, clock=clock)


@pytest.fixture
def lifecycle(session_factory, ledger, expiration_settings, clock) -> OrderLifecycle:
    return OrderLifecycle(session_factory, ledger, expiration_settings, clock=clock)


@pytest.fixture
def catalog(session_factory, ledger, cache, clock) -> ProductCatalog:
    return ProductCatalog(session_factory, ledger, cache, clock=clock)


@pytest.fixture
def sweeper(session_factory, lifecycle, expiration_settings, clock) -> ExpirationSweeper:
    return ExpirationSweeper(session_factory, lifecycle, expiration_settings, clock=clock)


@pytest.fixture
async def products(catalog):
    """P1 and P2 in stock, P3 sold out."""
    await catalog.create_product("P1", "Milk", 10, Decimal("1.50"))
    await catalog.create_product("P2", "Bread", 5, Decimal("2.00"))
    await catalog.create_product("P3", "Eggs", 0, Decimal("3.33"))


@pytest.fixture
def stock_of(session_factory):
    """Read a product's stock straight from the store, bypassing the cache."""

    async def read(code: str) -> int:
        async with session_factory() as session:
            product = await repository.get_product(session, code)
            return product.stock_quantity

    return read
