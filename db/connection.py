# db/connection.py

"""
asyncpg connection pool for the profile store.

The pool is created lazily on first use and bound to the event loop that
created it. Call close_connection_pool() from application shutdown.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

import asyncpg

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONNECTIONS = 1
DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_COMMAND_TIMEOUT = 30
DEFAULT_ACQUIRE_TIMEOUT = 10.0

_pool: Optional[asyncpg.Pool] = None
_pool_loop: Optional[asyncio.AbstractEventLoop] = None
_pool_lock: Optional[asyncio.Lock] = None
_pool_lock_loop: Optional[asyncio.AbstractEventLoop] = None


def get_db_dsn() -> str:
    """
    Get database connection string (DSN) from environment variables.

    Checks DB_DSN first, then falls back to DATABASE_URL.

    Raises:
        EnvironmentError: If no DSN is configured
    """
    dsn = os.getenv("DB_DSN")
    if not dsn:
        dsn = os.getenv("DATABASE_URL")
        if dsn:
            logger.info("Using DATABASE_URL as connection string (DB_DSN not found)")

    if not dsn:
        logger.critical("Neither DB_DSN nor DATABASE_URL environment variables are set")
        raise EnvironmentError("Database DSN not configured in environment")

    return dsn


def get_pool_config() -> Dict[str, int]:
    """Get connection pool configuration from environment variables."""
    return {
        'min_size': int(os.getenv("DB_MIN_CONN", str(DEFAULT_MIN_CONNECTIONS))),
        'max_size': int(os.getenv("DB_MAX_CONN", str(DEFAULT_MAX_CONNECTIONS))),
        'command_timeout': int(os.getenv("DB_COMMAND_TIMEOUT", str(DEFAULT_COMMAND_TIMEOUT))),
    }


def get_acquire_timeout() -> float:
    raw = os.getenv("DB_ACQUIRE_TIMEOUT")
    try:
        value = float(raw) if raw else DEFAULT_ACQUIRE_TIMEOUT
    except ValueError:
        logger.warning(f"Invalid DB_ACQUIRE_TIMEOUT {raw!r}; using {DEFAULT_ACQUIRE_TIMEOUT}s")
        return DEFAULT_ACQUIRE_TIMEOUT
    return value if value > 0 else DEFAULT_ACQUIRE_TIMEOUT


def _get_pool_lock(loop: asyncio.AbstractEventLoop) -> asyncio.Lock:
    """Pool-creation lock for ``loop``; asyncio locks must not cross event loops."""
    global _pool_lock, _pool_lock_loop

    if _pool_lock is None or _pool_lock_loop is not loop:
        _pool_lock = asyncio.Lock()
        _pool_lock_loop = loop
    return _pool_lock


def _discard_stale_pool() -> None:
    """Terminate a pool created on another event loop; it cannot be awaited from here."""
    global _pool, _pool_loop

    stale, _pool, _pool_loop = _pool, None, None
    if stale is None:
        return
    logger.warning("Discarding connection pool bound to a different event loop")
    try:
        stale.terminate()
    except Exception as e:
        logger.warning(f"Error terminating stale connection pool: {e}")


async def get_db_connection_pool() -> asyncpg.Pool:
    """
    Get the connection pool, creating it for the running loop if needed.

    Raises:
        ConnectionError: If the pool cannot be created
    """
    global _pool, _pool_loop

    current_loop = asyncio.get_running_loop()
    if _pool is not None and _pool_loop is current_loop:
        return _pool

    async with _get_pool_lock(current_loop):
        if _pool is not None and _pool_loop is current_loop:
            return _pool
        if _pool is not None:
            _discard_stale_pool()

        try:
            _pool = await asyncpg.create_pool(dsn=get_db_dsn(), **get_pool_config())
        except (OSError, asyncpg.PostgresError, EnvironmentError) as e:
            logger.error(f"Could not create DB pool: {e}")
            raise ConnectionError("Could not initialize DB pool") from e

        _pool_loop = current_loop
        logger.info("Database connection pool created")
        return _pool


@asynccontextmanager
async def get_db_connection_context(timeout: Optional[float] = None):
    """
    Async context manager yielding a pooled connection.

    Example:
        async with get_db_connection_context() as conn:
            result = await conn.fetchval("SELECT 1")
    """
    if timeout is None:
        timeout = get_acquire_timeout()

    pool = await get_db_connection_pool()
    conn = await pool.acquire(timeout=timeout)
    try:
        yield conn
    finally:
        await pool.release(conn)


async def close_connection_pool() -> None:
    global _pool, _pool_loop

    if _pool is None:
        return
    pool, _pool, _pool_loop = _pool, None, None
    await pool.close()
    logger.info("Database connection pool closed")
