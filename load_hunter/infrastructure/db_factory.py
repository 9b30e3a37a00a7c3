"""
Database connection factory utilities for Load Hunter.

Provides DSN composition from settings, an explicitly owned manager for the
async PostgreSQL connection pool used by the worker, and a one-off sync
connection for scripts.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

from typing import Optional

import psycopg
from psycopg import Connection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from load_hunter.config import Settings, get_settings
from load_hunter.domain.errors import StoreUnavailableError
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


class PoolManager:
    """
    Owner of the async connection pool.

    One manager per process; the worker opens it on start and closes it on
    shutdown. Connections hand out rows as dicts.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self._dsn = dsn or build_dsn(settings)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._pool: Optional[AsyncConnectionPool] = None

    @property
    def pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            raise RuntimeError("PoolManager.open() has not been awaited")
        return self._pool

    async def open(self) -> AsyncConnectionPool:
        """
        Create and open the pool, waiting for ``min_size`` connections.

        Raises
        ------
        StoreUnavailableError
            If the database stays unreachable after all retry attempts.
        """
        if self._pool is not None:
            return self._pool
        try:
            self._pool = await self._open_with_retry()
        except psycopg.OperationalError as exc:
            raise StoreUnavailableError(f"Cannot open connection pool: {exc}") from exc
        log.info(
            "[POOL OPEN]",
            extra={"min_size": self._min_size, "max_size": self._max_size},
        )
        return self._pool

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(psycopg.OperationalError),
        reraise=True,
    )
    async def _open_with_retry(self) -> AsyncConnectionPool:
        pool = AsyncConnectionPool(
            conninfo=self._dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )
        try:
            await pool.open(wait=True, timeout=10.0)
        except psycopg.OperationalError:
            await pool.close()
            raise
        return pool

    async def close(self) -> None:
        """Close the managed pool and release resources."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    Use this for scripts and one-off operations.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn())


__all__ = ["PoolManager", "build_dsn", "get_sync_connection"]
