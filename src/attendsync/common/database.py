#!/usr/bin/env python3
"""Database Utilities for the attendance ledger.

This module provides:
    - Transaction context manager with automatic commit/rollback
    - Plain connection context manager
    - Connection pool creation, shutdown and health check

Example:
    async with database_transaction(pool) as conn:
        await conn.executemany("INSERT INTO attendance_entries ...", rows)
        await conn.executemany("INSERT INTO attendance_synced_records ...", keys)
        # Both statements commit together or not at all
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg

from .exceptions import (
    ConnectionPoolError,
    DatabaseError,
    TransactionError,
)

logger = logging.getLogger(__name__)

ACQUIRE_TIMEOUT_SECONDS = 30.0


# ============================================
# Context Managers
# ============================================

async def _acquire(pool) -> Any:
    if pool is None:
        raise ConnectionPoolError("Database connection pool is not initialized")
    try:
        return await asyncio.wait_for(pool.acquire(), timeout=ACQUIRE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        raise ConnectionPoolError(
            "Timeout acquiring database connection",
            details={"timeout_seconds": ACQUIRE_TIMEOUT_SECONDS},
        )
    except (OSError, asyncpg.PostgresError) as e:
        raise ConnectionPoolError(
            f"Failed to acquire database connection: {e}",
            cause=e,
        )


@asynccontextmanager
async def database_transaction(
    pool,
    isolation: str = "read_committed",
) -> AsyncIterator[Any]:
    """Context manager for database transactions with automatic commit/rollback.

    Args:
        pool: asyncpg connection pool
        isolation: Transaction isolation level
            ("serializable", "repeatable_read", "read_committed")

    Yields:
        Database connection within transaction

    Raises:
        ConnectionPoolError: If connection cannot be acquired
        TransactionError: If the transaction cannot start or commit
        DatabaseError: For any other database failure inside the block
    """
    conn = await _acquire(pool)
    try:
        transaction = conn.transaction(isolation=isolation)
        try:
            await transaction.start()
        except asyncpg.PostgresError as e:
            raise TransactionError(f"Failed to start transaction: {e}", cause=e)

        try:
            yield conn
        except BaseException as e:
            try:
                await transaction.rollback()
                logger.debug("Transaction rolled back due to exception")
            except (OSError, asyncpg.PostgresError) as rollback_error:
                logger.error(f"Rollback failed: {rollback_error}")
            if isinstance(e, (asyncpg.PostgresError, OSError)):
                raise _convert_db_exception(e) from e
            raise

        try:
            await transaction.commit()
        except asyncpg.PostgresError as e:
            raise TransactionError(f"Commit failed: {e}", operation="commit", cause=e)
        logger.debug("Transaction committed successfully")

    finally:
        await pool.release(conn)


@asynccontextmanager
async def database_connection(pool) -> AsyncIterator[Any]:
    """Simple context manager for database connection without transaction.

    Example:
        async with database_connection(pool) as conn:
            rows = await conn.fetch("SELECT * FROM attendance_devices")
    """
    conn = await _acquire(pool)
    try:
        yield conn
    except (asyncpg.PostgresError, OSError) as e:
        raise _convert_db_exception(e) from e
    finally:
        await pool.release(conn)


# ============================================
# Error Conversion
# ============================================

def _convert_db_exception(e: Exception) -> DatabaseError:
    """Convert a driver exception to the matching DatabaseError subtype."""
    if isinstance(e, DatabaseError):
        return e

    error_str = str(e).lower()

    if "deadlock" in error_str:
        return TransactionError(
            f"Deadlock detected: {e}",
            operation="transaction",
            cause=e,
        )

    if "timeout" in error_str or "timed out" in error_str:
        return TransactionError(
            f"Database operation timed out: {e}",
            operation="query",
            cause=e,
        )

    return DatabaseError(
        f"Database operation failed: {e}",
        cause=e,
    )


# ============================================
# Connection Pool Helpers
# ============================================

async def create_pool(
    database_url: str,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    **kwargs,
):
    """Create a database connection pool.

    Raises:
        ConnectionPoolError: If pool creation fails
    """
    try:
        pool = await asyncpg.create_pool(
            database_url,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
            **kwargs,
        )
    except (OSError, asyncpg.PostgresError) as e:
        raise ConnectionPoolError(
            f"Failed to create database pool: {e}",
            cause=e,
        )

    logger.info(f"Database pool created (min={min_size}, max={max_size})")
    return pool


async def close_pool(pool, timeout: float = 10.0):
    """Close database pool gracefully, terminating it if that takes too long."""
    if pool is None:
        return

    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
        logger.info("Database pool closed")
    except asyncio.TimeoutError:
        logger.warning(f"Pool close timed out after {timeout}s, terminating")
        pool.terminate()


async def check_database_health(pool) -> dict[str, Any]:
    """Check database connection health."""
    if pool is None:
        return {
            "healthy": False,
            "error": "Pool not initialized",
        }

    try:
        async with database_connection(pool) as conn:
            result = await conn.fetchval("SELECT 1")
    except (DatabaseError, OSError, asyncpg.PostgresError) as e:
        return {
            "healthy": False,
            "error": str(e),
        }

    pool_size = pool.get_size()
    pool_free = pool.get_idle_size()
    return {
        "healthy": result == 1,
        "pool_size": pool_size,
        "pool_free": pool_free,
        "pool_used": pool_size - pool_free,
    }


__all__ = [
    "database_transaction",
    "database_connection",
    "create_pool",
    "close_pool",
    "check_database_health",
]
