"""Async database engine and session management.

Configures the SQLAlchemy async engine with connection pooling and bounded
waits, and provides dependency injection for database sessions.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from authbroker.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
    pool_timeout=settings.database_pool_timeout_seconds,
    connect_args={"command_timeout": settings.database_command_timeout_seconds},
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def dialect_insert(db: AsyncSession, model: type):
    """Return an INSERT construct with ON CONFLICT support for the bound dialect.

    PostgreSQL is the deployment target; SQLite backs the test suite. Both
    expose ``on_conflict_do_update`` / ``on_conflict_do_nothing``.

    Args:
        db: Async database session.
        model: ORM class to insert into.

    Returns:
        Dialect-specific Insert statement.
    """
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


async def check_database(db: AsyncSession) -> bool:
    """Probe the database with ``SELECT 1``.

    Returns:
        True if the query succeeded, False on a database or network error.
    """
    try:
        result = await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        await db.rollback()
        return False
    return result.scalar_one() == 1
