"""Async database connection using SQLAlchemy (supports SQLite and PostgreSQL)."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import InterfaceError, InvalidRequestError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from volleyprono.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def get_database_url(url: str) -> str:
    """Convert database URL to async format."""
    # SQLite
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # PostgreSQL
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine with dialect-appropriate pool settings."""
    async_url = get_database_url(url)
    engine_kwargs = {
        "echo": False,
    }

    if async_url.startswith("sqlite"):
        # SQLite-specific settings
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        engine_kwargs["poolclass"] = StaticPool
    else:
        # PostgreSQL-specific settings
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10
        engine_kwargs["pool_recycle"] = 300
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_reset_on_return"] = "rollback"

    return create_async_engine(async_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    """Session factory bound to the provided engine."""
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


DATABASE_URL = get_database_url(settings.DATABASE_URL)
is_sqlite = DATABASE_URL.startswith("sqlite")

async_engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = build_session_factory(async_engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(engine: AsyncEngine = async_engine) -> None:
    """Initialize database tables."""
    # Register table metadata before create_all
    import volleyprono.models  # noqa: F401

    logger.info("Initializing database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created successfully.")


async def close_db() -> None:
    """Close database connections."""
    logger.info("Closing database connections...")
    await async_engine.dispose()
    logger.info("Database connections closed.")


@asynccontextmanager
async def get_session_with_retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    session_factory: sessionmaker = AsyncSessionLocal,
):
    """
    Context manager that provides a session with automatic retry on connection errors.

    Use this for scheduled jobs that may encounter stale connections after
    database restarts or network interruptions.

    Example:
        async with get_session_with_retry() as session:
            result = await session.execute(...)
            await session.commit()

    Retries only happen on session CREATION failure. If a connection drops
    DURING execution, the exception propagates to the caller.
    """
    last_error = None
    current_delay = retry_delay
    session = None

    for attempt in range(max_retries):
        try:
            session = session_factory()
            # Test the connection is alive before yielding
            await session.connection()
            break
        except (InterfaceError, OperationalError, InvalidRequestError) as e:
            last_error = e
            error_msg = str(e).lower()

            if session is not None:
                try:
                    await session.close()
                except Exception:
                    pass
                session = None

            retryable = "closed" in error_msg or "connection" in error_msg or "terminated" in error_msg
            if retryable and attempt < max_retries - 1:
                logger.warning(
                    f"Database connection error (attempt {attempt + 1}/{max_retries}): {e}. "
                    f"Retrying in {current_delay}s..."
                )
                await asyncio.sleep(current_delay)
                current_delay *= 2  # Exponential backoff
                continue

            # Non-retryable error or max retries reached
            raise

    if session is None:
        if last_error:
            raise last_error
        raise RuntimeError("Failed to create database session after retries")

    try:
        yield session
    finally:
        try:
            await session.close()
        except Exception as close_error:
            # Cleanup is best-effort
            logger.debug(f"Error closing session during cleanup: {close_error}")
