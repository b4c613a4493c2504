"""
Database connection management with SQLAlchemy async engine.

This module provides the async engine and session factory, the FastAPI
session dependency, health checks, and ``transaction_scope``: the single
transaction boundary used by every multi-row mutation in the fulfillment
workflow. Connections run at the configured isolation level (read committed
by default) and each transaction carries a deadline.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.core.config import get_settings
from src.core.logging import get_logger, log_performance
from src.services.errors import (
    FulfillmentError,
    PersistenceError,
    TransactionTimeoutError,
)

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _convert_database_url_to_async(url: str) -> str:
    """
    Convert PostgreSQL URL to async format.

    Args:
        url: Database connection URL

    Returns:
        Async-compatible database URL with asyncpg driver
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine() -> AsyncEngine:
    """
    Create async SQLAlchemy engine with connection pooling.

    Returns:
        Configured async SQLAlchemy engine
    """
    settings = get_settings()
    database_url = _convert_database_url_to_async(settings.database_url)

    pool_options: dict = {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }
    if settings.is_test:
        pool_options = {"poolclass": NullPool}

    engine = create_async_engine(
        database_url,
        echo=settings.debug,
        isolation_level=settings.db_isolation_level,
        connect_args={
            "server_settings": {
                "application_name": settings.app_name,
            },
            "command_timeout": 60,
            "timeout": 10,
        },
        **pool_options,
    )

    logger.info(
        "Database engine created",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        isolation_level=settings.db_isolation_level,
        environment=settings.environment,
    )

    return engine


def get_engine() -> AsyncEngine:
    """
    Get or create the global async database engine.

    Raises:
        RuntimeError: If engine initialization fails
    """
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except Exception as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database session factory created")

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create async database session with automatic cleanup.

    Services commit their own units of work through ``transaction_scope``;
    anything left open when the session ends is rolled back.
    """
    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database session injection.

    Example:
        @router.get("/orders/{order_id}")
        async def get_order(order_id: UUID, db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_session() as session:
        yield session


@asynccontextmanager
async def transaction_scope(
    session: AsyncSession,
    operation: str,
    timeout_seconds: Optional[float] = None,
    **context,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a unit of work as one atomic transaction with a deadline.

    Commits when the block completes, rolls back on any exception. An
    exceeded deadline surfaces as TransactionTimeoutError and database
    failures as PersistenceError; fulfillment errors raised by the block
    propagate unchanged after the rollback.

    Args:
        session: Session the unit of work runs on
        operation: Operation name for logging
        timeout_seconds: Deadline, defaults to the configured transaction timeout
        **context: Extra logging context

    Example:
        async with transaction_scope(session, "create_payment", order_id=str(oid)):
            session.add(payment)
    """
    timeout = timeout_seconds or get_settings().transaction_timeout_seconds

    try:
        with log_performance(logger, operation, **context):
            async with asyncio.timeout(timeout):
                yield session
                await session.commit()
    except TimeoutError as e:
        await session.rollback()
        logger.error(
            "Transaction timed out",
            operation=operation,
            timeout_seconds=timeout,
            **context,
        )
        raise TransactionTimeoutError(
            f"Transaction '{operation}' exceeded {timeout}s",
            operation=operation,
            timeout_seconds=timeout,
        ) from e
    except FulfillmentError:
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            "Transaction failed",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
            **context,
        )
        raise PersistenceError(
            f"Transaction '{operation}' failed",
            operation=operation,
            error=str(e),
        ) from e
    except BaseException:
        await session.rollback()
        raise


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Check database connectivity with retry logic.

    Args:
        max_retries: Maximum number of connection attempts
        retry_delay: Base delay between retries in seconds

    Returns:
        True if database is healthy, False otherwise
    """
    for attempt in range(max_retries):
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database health check passed", attempt=attempt + 1)
            return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database health check failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
            )
            if attempt < max_retries - 1:
                await asyncio.sleep(retry_delay * (2**attempt))
        except Exception as e:
            logger.error(
                "Database health check failed - unexpected error",
                attempt=attempt + 1,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    logger.error("Database health check failed after all retries", max_retries=max_retries)
    return False


async def close_database_connections() -> None:
    """Dispose of the engine during application shutdown."""
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database connections closed and engine disposed")
        except Exception as e:
            logger.error(
                "Error closing database connections",
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            _engine = None
            _session_factory = None
