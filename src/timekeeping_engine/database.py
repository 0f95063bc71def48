"""Database connection, session and transaction management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncGenerator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from timekeeping_engine.config import get_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


def get_engine() -> AsyncEngine:
    """Create async database engine."""
    settings = get_settings()
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None:
        _engine = get_engine()
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine, _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run a block atomically on ``session``.

    Opens and commits a transaction when the session has none. When the
    caller already holds a transaction the block joins it, and the caller's
    commit or rollback decides the outcome for everything written inside.
    """
    if session.in_transaction():
        yield session
        return

    async with session.begin():
        yield session


def _is_postgres(session: AsyncSession) -> bool:
    return session.bind is not None and session.bind.dialect.name == "postgresql"


def upsert_insert(session: AsyncSession, model: Any) -> Any:
    """INSERT construct supporting ``on_conflict_do_nothing`` for the bound dialect."""
    if _is_postgres(session):
        return postgresql.insert(model)
    return sqlite.insert(model)


async def acquire_advisory_xact_lock(session: AsyncSession, key: str) -> None:
    """Block until a transaction-scoped advisory lock on ``key`` is held.

    The lock is released automatically at commit or rollback. Only
    PostgreSQL supports advisory locks; other dialects skip this step.
    """
    if not _is_postgres(session):
        return
    await session.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
        {"key": key},
    )


async def lock_timesheet(session: AsyncSession, timesheet_id: UUID) -> None:
    """Serialize punch writes and rebuilds for one timesheet."""
    await acquire_advisory_xact_lock(session, f"timesheet:{timesheet_id}")


async def lock_employee(session: AsyncSession, employee_id: UUID) -> None:
    """Serialize leave balance mutations for one employee."""
    await acquire_advisory_xact_lock(session, f"employee:{employee_id}")
