"""
Async engine, session factory and the per-request session dependency.

PostgreSQL is the production target. SQLite (aiosqlite) is accepted for
local runs and tests; there every transaction starts with BEGIN IMMEDIATE
so concurrent writers are serialized by the database instead of racing
on stale reads.
"""

from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tourbook.core.config import get_settings

settings = get_settings()


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # take BEGIN away from the driver, we emit our own below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            connect_args={"timeout": settings.DB_LOCK_TIMEOUT_MS / 1000},
        )
        _use_immediate_transactions(engine)
        return engine

    connect_args = {}
    if url.startswith("postgresql+asyncpg"):
        # a blocked FOR UPDATE fails with 55P03 instead of waiting forever
        connect_args["server_settings"] = {"lock_timeout": str(settings.DB_LOCK_TIMEOUT_MS)}

    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = build_sessionmaker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request. Services that own their transaction (the
    booking coordinator) commit themselves; whatever is left is committed
    here, and any exception rolls the request back.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
