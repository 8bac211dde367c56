"""
NutriScan Backend — Database Session Management
================================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
Why:   The audit log is the only thing this service persists; all connection
       handling for it lives here.
How:   An async engine (asyncpg driver) with a connection pool. Request
       handlers get a session that commits on success and rolls back on
       error; background tasks open their own via `session_scope()`.
Who:   Route handlers (Depends) and TransactionService.
When:  Engine is created at module import; sessions per request / per task.

Connection Pooling:
    pool_size / max_overflow come from settings (10 + 10 by default). Audit
    writes are small and fire-and-forget, so the pool stays modest.
    pool_pre_ping validates connections before use; pool_recycle=3600 drops
    connections older than an hour.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from nutriscan.config import settings


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=settings.db_pool_pre_ping,
    pool_recycle=3600,
    # SQL echo only in DEBUG; it is noisy
    echo=settings.log_level == "DEBUG",
)

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: records are serialized after the commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base; its metadata is what Alembic autogenerates against."""
    pass


# ── Sessions ──────────────────────────────────────────────────────────────
@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Session that commits when the block exits cleanly and rolls back (then
    re-raises) when it does not. Background tasks use it directly.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: one session_scope() per request.

    Example:
        @router.get("/transactions")
        async def list_transactions(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    async with session_scope() as session:
        yield session


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def check_database() -> bool:
    """SELECT 1 round-trip; used by /health."""
    async with engine.connect() as connection:
        await connection.execute(text("SELECT 1"))
    return True


async def dispose_engine() -> None:
    """Close all pooled connections. Called from the lifespan on shutdown."""
    await engine.dispose()
