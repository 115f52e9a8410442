"""
NutriLens Backend: Database Session Management
==============================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
How:   Creates an async engine with connection pooling and provides a session
       dependency that commits on success and rolls back on error.
Who:   Route handlers (via Depends) and the credit ledger (via the factory).
When:  Engine is created at module import; sessions are created per-request.

Two session styles are in use:
    - Request-scoped (get_db_session): users, food analyses. One transaction
      per HTTP request, committed when the handler returns.
    - Ledger-scoped (async_session_factory): CreditLedger opens and commits
      its own short transaction for every balance change, so a consume is
      durable before the paid AI call starts and row locks are never held
      across that call.

Connection Pooling (PostgreSQL):
    pool_size=20, max_overflow=10 → at most 30 connections
    pool_pre_ping validates connections before use
    pool_recycle=3600 recycles connections every hour
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from nutrilens.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    Build create_async_engine keyword arguments for the given URL.

    SQLite (aiosqlite) gets a busy timeout so concurrent writers queue behind
    the database lock instead of failing; pool sizing only applies to server
    databases and file-backed SQLite.
    """
    url = make_url(database_url)
    options: Dict[str, Any] = {
        "echo": settings.log_level == "DEBUG",
        "pool_pre_ping": settings.db_pool_pre_ping,
    }
    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"timeout": 30}
        if url.database in (None, "", ":memory:"):
            return options
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=3600,
    )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: attributes stay readable after commit without a
# lazy reload outside the session context
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares a single metadata object, which Alembic reads for migrations.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back and re-raises for the global handlers
        5. Always: closes the session (returns connection to pool)

    Example usage in a route:
        @router.get("/api/food-analyses")
        async def list_analyses(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """Closes all pooled connections. Called during application shutdown."""
    await engine.dispose()
