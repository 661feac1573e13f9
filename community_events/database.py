"""
Database connection management and session handling.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine,
)

from .config import Settings, get_settings
from .models.base import Base
from .cache import init_cache, close_cache

logger = logging.getLogger(__name__)

# Global engine and session factory
engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def _milliseconds(seconds: float) -> str:
    return str(max(1, int(seconds * 1000)))


def _engine_options(settings: Settings) -> Dict[str, Any]:
    """Backend specific engine arguments."""
    url = make_url(settings.database_url)

    if url.get_backend_name() == "sqlite":
        # Writers wait on SQLite's database lock instead of failing immediately
        return {"connect_args": {"timeout": 15}}

    options: Dict[str, Any] = {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }
    if url.get_driver_name() == "asyncpg":
        # Waiters on a locked event row fail with 55P03 once the registration budget is spent
        options["connect_args"] = {
            "server_settings": {
                "application_name": "community_events",
                "lock_timeout": _milliseconds(settings.registration_timeout_seconds),
                "statement_timeout": _milliseconds(settings.database_statement_timeout_seconds),
            }
        }
    return options


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Create and configure the database engine with connection pooling."""
    settings = settings or get_settings()

    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        **_engine_options(settings)
    )

    if engine.dialect.name == "sqlite":
        # SQLite ignores ON DELETE CASCADE unless enabled per connection
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory for database sessions."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


async def init_database() -> None:
    """Initialize database connection and create tables."""
    global engine, async_session_factory

    logger.info("Initializing database connection...")

    engine = create_database_engine()
    async_session_factory = create_session_factory(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await init_cache()

    logger.info("Database and cache initialized successfully")


async def close_database() -> None:
    """Close database connections."""
    global engine, async_session_factory

    if engine:
        logger.info("Closing database connections...")
        await engine.dispose()
        engine = None
        async_session_factory = None
        logger.info("Database connections closed")

    await close_cache()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Return the application's session factory.

    Services that manage their own transactions (registration) open sessions
    from this factory instead of sharing the request session.
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return async_session_factory


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get a database session with automatic cleanup.

    Usage:
        async with get_db_session() as session:
            result = await session.execute(query)
    """
    session_factory = get_session_factory()

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            # Includes cancellation so an abandoned request never leaves a transaction open
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for getting database sessions.

    Usage in FastAPI endpoints:
        @app.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_db_session() as session:
        yield session
