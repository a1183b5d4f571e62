import contextlib
import time
from typing import Iterator, Optional, Dict, Any, List, Mapping
from psycopg_pool import ConnectionPool, PoolTimeout
from psycopg.rows import dict_row
from psycopg import sql
import psycopg
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from .config import settings
from .logging_setup import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: Optional[ConnectionPool] = None


def _configure_connection(conn: psycopg.Connection) -> None:
    """Every pooled connection is read-only and bounded by a statement timeout"""
    conn.autocommit = True
    conn.execute("SET default_transaction_read_only = on")
    conn.execute(
        sql.SQL("SET statement_timeout = {}").format(sql.Literal(settings.db_statement_timeout_ms))
    )


@retry(
    stop=stop_after_attempt(settings.db_connect_retries),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type((psycopg.OperationalError, PoolTimeout)),
    reraise=True,
)
def _create_pool() -> ConnectionPool:
    """Build and open a fresh pool; a pool that failed to open cannot be reopened"""
    pool = ConnectionPool(
        settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        timeout=settings.db_pool_timeout,
        max_idle=300,  # 5 minutes
        max_lifetime=3600,  # 1 hour
        check=ConnectionPool.check_connection,
        configure=_configure_connection,
        open=False,
    )
    try:
        pool.open(wait=True, timeout=settings.db_pool_timeout)
    except Exception as e:
        logger.warning(f"Database connection pool failed to open: {e}")
        pool.close()
        raise
    return pool


def init_pool() -> None:
    """Initialize the connection pool, waiting for the store to accept connections"""
    global _pool
    if _pool is None:
        _pool = _create_pool()
        logger.info("Database connection pool initialized")


def get_pool() -> ConnectionPool:
    """Get the connection pool, initializing if needed"""
    if _pool is None:
        init_pool()
    return _pool


@contextlib.contextmanager
def get_cursor() -> Iterator[psycopg.Cursor]:
    """Context manager for a read-only dict_row cursor from the pool.

    Driver errors propagate unlogged; callers translate and log them once.
    """
    pool = get_pool()

    with pool.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            yield cur


def _execute(query: str, params: Optional[Mapping[str, Any]], fetch_all: bool):
    start_time = time.time()

    with get_cursor() as cur:
        cur.execute(query, params)
        result = cur.fetchall() if fetch_all else cur.fetchone()

    duration_ms = int((time.time() - start_time) * 1000)
    logger.log_operation(
        operation="db_query",
        params=dict(params) if params else None,
        status="completed",
        duration_ms=duration_ms
    )

    return result


def fetch_one(query: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Execute a query once and return its first row, or None"""
    return _execute(query, params, fetch_all=False)


def fetch_all(query: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
    """Execute a query once and return all rows"""
    return _execute(query, params, fetch_all=True)


def check_connection() -> bool:
    """Test database connection and return True if successful"""
    try:
        result = fetch_one("SELECT 1 AS test")
        return result is not None and result["test"] == 1
    except psycopg.Error as e:
        logger.error(f"Database connection test failed: {e}")
        return False


def close_pool() -> None:
    """Close the connection pool gracefully"""
    global _pool
    if _pool:
        _pool.close()
        _pool = None
        logger.info("Database connection pool closed")
