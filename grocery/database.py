"""
Grocery Manager — engine and session wiring

Postgres (asyncpg) is the production store: stock rows are locked with
SELECT ... FOR UPDATE and lock_timeout bounds how long a locker waits.

SQLite (aiosqlite) has no row locks. Every transaction is opened with
BEGIN IMMEDIATE instead, which takes the database write lock up front and
serializes all writers. pysqlite's own transaction handling is switched
off so SAVEPOINTs work.
"""

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .config import DatabaseSettings
from .schema import metadata


def create_engine(settings: DatabaseSettings) -> AsyncEngine:
    url = make_url(settings.url)
    backend = url.get_backend_name()

    connect_args: dict = {}
    if backend == "sqlite":
        connect_args["timeout"] = settings.lock_timeout_ms / 1000
    elif url.get_driver_name() == "asyncpg":
        connect_args["server_settings"] = {"lock_timeout": str(settings.lock_timeout_ms)}

    engine = create_async_engine(settings.url, echo=settings.echo, connect_args=connect_args)

    if backend == "sqlite":
        _install_sqlite_locking(engine)
    return engine


def _install_sqlite_locking(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
