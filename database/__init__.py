"""
Database module for the generation history service.

Provides async SQLAlchemy engine lifecycle and session factory access.
Repositories receive the session factory and open one short unit of work per
store call, so a best-effort write can never poison the primary write.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import get_settings

logger = logging.getLogger(__name__)

# Engine and session factory owned by the application lifespan
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by every repository."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database() -> None:
    """
    Initialize the database engine and session factory.

    Should be called during application startup.
    """
    global _engine, _async_session_factory

    settings = get_settings()

    if not settings.database_url:
        logger.warning("DATABASE_URL not configured, database features disabled")
        return

    logger.info("Initializing database connection...")

    engine_kwargs = {"pool_pre_ping": True, "echo": settings.debug and settings.db_echo}
    if not settings.database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.db_pool_size
        engine_kwargs["max_overflow"] = settings.db_max_overflow

    _engine = create_async_engine(settings.database_url, **engine_kwargs)
    _async_session_factory = build_session_factory(_engine)

    if settings.db_auto_create:
        await create_tables(_engine)

    logger.info("Database initialized successfully")


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    from .models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """
    Close the database connection.

    Should be called during application shutdown.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.info("Closing database connection...")
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the session factory.

    Raises:
        RuntimeError: If the database has not been initialized
    """
    if _async_session_factory is None:
        raise RuntimeError(
            "Database not initialized. Call init_database() first or check DATABASE_URL."
        )
    return _async_session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session that commits on success."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def is_database_available() -> bool:
    """Check if database is available and initialized."""
    return _engine is not None and _async_session_factory is not None


async def check_database() -> dict:
    """Ping the database for the detailed health check."""
    import time

    from sqlalchemy import text

    if _engine is None:
        return {"status": "not_initialized", "latency_ms": None}

    try:
        start = time.perf_counter()
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e), "latency_ms": None}


__all__ = [
    "build_session_factory",
    "init_database",
    "create_tables",
    "close_database",
    "get_session",
    "get_session_factory",
    "is_database_available",
    "check_database",
]
