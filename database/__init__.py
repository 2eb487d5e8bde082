"""Database module for the reconciler's read model and job tables.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
- Store construction for the configured backend
"""

import logging
import ssl
from typing import Optional, Dict, Any
from urllib.parse import urlparse, parse_qs

import asyncpg
import backoff

from .exceptions import DatabaseError, DatabaseSchemaError, StoreError
from .lib.schema_manager import SchemaManager
from .memory import MemoryStore
from .postgres import PostgresStore
from .store import Store, UpdateResult

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for CockroachDB Cloud connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }
    if params.get('sslmode', ['require'])[0] != 'disable':
        kwargs['ssl'] = _get_ssl_context()

    return kwargs

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: str) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Database connection URL

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be applied
    """
    global _pool

    if not db_url:
        raise ValueError("Database URL not provided")

    try:
        _pool = await asyncpg.create_pool(
            db_url,
            min_size=2,
            max_size=20,
            max_queries=10000,   # Reset connection after this many queries
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            **_get_connection_kwargs(db_url)
        )

        await SchemaManager(_pool).initialize()
        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        # Retries create a new pool
        await close()
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        raise RuntimeError("Database pool not initialized, call init_db first")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool

    if _pool:
        await _pool.close()
        _pool = None

def create_store(settings, pool: Optional[asyncpg.Pool] = None) -> Store:
    """Build the store selected by settings.db_url.

    Args:
        settings: Loaded Settings
        pool: Initialized pool, required unless db_url is memory://
    """
    if settings.uses_memory_backend:
        logger.info("Using in-memory store")
        return MemoryStore()
    if pool is None:
        raise DatabaseError("A connection pool is required for the PostgreSQL store")
    return PostgresStore(pool)

# Export public interface
__all__ = [
    'init_db',
    'get_pool',
    'close',
    'create_store',
    'Store',
    'UpdateResult',
    'MemoryStore',
    'PostgresStore',
    'DatabaseError',
    'DatabaseSchemaError',
    'StoreError',
]
