"""Database module for the ledger graph.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
- Selecting and opening the configured graph store backend
"""

import json
import logging
import ssl
from typing import Optional, Dict, Any
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs

from .exceptions import DatabaseError, DatabaseSchemaError, GraphStoreError, NodeNotFoundError
from .lib.graph_store import Direction, Edge, GraphStore, Node, Relationship
from .lib.memory_store import MemoryGraphStore
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None
_store: Optional[GraphStore] = None

# sslmode values that require an encrypted connection
_SSL_MODES = ('require', 'verify-ca', 'verify-full')

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for verified server connections."""
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
    sslmode = params.get('sslmode', [None])[0]
    if sslmode in _SSL_MODES:
        kwargs['ssl'] = _get_ssl_context()

    return kwargs

def _replace_database(db_url: str, db_name: str) -> str:
    return urlparse(db_url)._replace(path=f'/{db_name}').geturl()

async def _init_connection(conn: asyncpg.Connection) -> None:
    # Property maps travel as Python dicts
    await conn.set_type_codec(
        'jsonb',
        encoder=json.dumps,
        decoder=json.loads,
        schema='pg_catalog'
    )

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database if it doesn't exist.

    Args:
        db_url: Database connection URL

    Raises:
        Exception: If database creation fails after retries
    """
    try:
        db_name = urlparse(db_url).path.strip('/') or 'postgres'
        if db_name == 'postgres':
            return

        # Connect to the maintenance database
        base_url = _replace_database(db_url, 'postgres')
        logger.info(f"Connecting to postgres to create {db_name} if needed")

        conn = await asyncpg.connect(base_url, **_get_connection_kwargs(base_url))
        try:
            exists = await conn.fetchval(
                'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)',
                db_name
            )
            if not exists:
                await conn.execute(f'CREATE DATABASE "{db_name}"')
                logger.info(f"Created database {db_name}")
        finally:
            await conn.close()

    except Exception as e:
        logger.error(f"Error creating database: {e}")
        raise

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None, force_recreate: bool = False) -> None:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.
        force_recreate: If True, drop the graph tables and recreate them

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be applied
    """
    global _pool, _schema_manager

    if _pool is not None and not force_recreate:
        return

    try:
        if not db_url:
            # Import here to avoid circular imports
            from config import get_settings
            db_url = get_settings().get('db_url')
        if not db_url:
            raise ValueError("Database URL not provided")

        await create_database_if_not_exists(db_url)

        if _pool is None:
            _pool = await asyncpg.create_pool(
                db_url,
                min_size=2,          # Minimum idle connections
                max_size=10,         # Maximum connections
                max_queries=10000,   # Reset connection after this many queries
                max_inactive_connection_lifetime=300.0,  # 5 minutes
                command_timeout=60.0,  # 1 minute command timeout
                init=_init_connection,
                **_get_connection_kwargs(db_url)
            )

        _schema_manager = SchemaManager(_pool)

        if force_recreate:
            logger.info("Force recreate requested. Dropping graph tables...")
            async with _pool.acquire() as conn:
                await conn.execute('DROP TABLE IF EXISTS graph_edges CASCADE')
                await conn.execute('DROP TABLE IF EXISTS graph_nodes CASCADE')
                await conn.execute('DROP TABLE IF EXISTS schema_version CASCADE')

        await _schema_manager.initialize()

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

def create_store(settings: Optional[Dict[str, Any]] = None) -> GraphStore:
    """Build the graph store selected by the ``graph_backend`` setting.

    Args:
        settings: Validated settings, defaults to the process-wide settings

    Returns:
        An unconnected graph store

    Raises:
        GraphStoreError: If the backend is unknown
    """
    if settings is None:
        from config import get_settings
        settings = get_settings()

    backend = settings.get('graph_backend', 'postgres')
    if backend == 'memory':
        return MemoryGraphStore()
    if backend == 'postgres':
        from .lib.postgres_store import PostgresGraphStore
        return PostgresGraphStore(settings.get('db_url'))
    if backend == 'neo4j':
        from .lib.neo4j_store import Neo4jGraphStore
        return Neo4jGraphStore(
            settings['neo4j_uri'],
            settings.get('neo4j_user', 'neo4j'),
            settings.get('neo4j_password', ''),
            settings.get('neo4j_database', 'neo4j')
        )
    raise GraphStoreError(f"Unknown graph backend: {backend}")

async def get_store(settings: Optional[Dict[str, Any]] = None) -> GraphStore:
    """Get the connected process-wide graph store, opening it on first use."""
    global _store

    if _store is None:
        store = create_store(settings)
        await store.connect()
        _store = store
        logger.info(f"Opened {store.backend} graph store")
    return _store

async def close_store() -> None:
    """Disconnect the process-wide graph store and release the pool."""
    global _store

    if _store is not None:
        await _store.disconnect()
        _store = None
    await close()

# Export public interface
__all__ = [
    'init_db', 'get_pool', 'close',
    'create_store', 'get_store', 'close_store',
    'GraphStore', 'MemoryGraphStore', 'Node', 'Edge', 'Relationship', 'Direction',
    'DatabaseError', 'DatabaseSchemaError', 'GraphStoreError', 'NodeNotFoundError'
]
