"""
PostgreSQL access for the panel storefront
Direct connections with raw SQL; blocking psycopg2 calls run in worker threads
"""

import asyncio
import logging
import threading
import time
from typing import Optional, Dict, List

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

from config import get_config

logger = logging.getLogger(__name__)

_connection_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None
_pool_lock = threading.Lock()

READ_RETRIES = 3


class DatabaseError(Exception):
    """Persistence failure surfaced to callers"""
    pass


def get_connection_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Get or create the database connection pool"""
    global _connection_pool
    if _connection_pool is None:
        with _pool_lock:
            if _connection_pool is None:
                db_config = get_config().database
                if not db_config.url:
                    raise DatabaseError("DATABASE_URL not configured")
                _connection_pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=db_config.min_connections,
                    maxconn=db_config.max_connections,
                    dsn=db_config.url,
                    cursor_factory=RealDictCursor,
                    connect_timeout=15,
                    keepalives_idle=300,
                    keepalives_interval=15,
                    keepalives_count=2,
                )
                logger.info(f"✅ Database connection pool created ({db_config.min_connections}-{db_config.max_connections} connections)")
    return _connection_pool


def close_connection_pool():
    """Close every pooled connection (application shutdown)"""
    global _connection_pool
    with _pool_lock:
        if _connection_pool is not None:
            _connection_pool.closeall()
            _connection_pool = None
            logger.info("🔌 Database connection pool closed")


def get_connection():
    """Check out a connection in autocommit mode with the session pinned to UTC"""
    conn = get_connection_pool().getconn()
    conn.autocommit = True
    with conn.cursor() as cursor:
        cursor.execute("SET TIME ZONE 'UTC'")
    return conn


def return_connection(conn, is_broken: bool = False):
    try:
        get_connection_pool().putconn(conn, close=is_broken)
    except Exception as e:
        logger.warning(f"⚠️ Could not return connection to pool: {e}")
        try:
            conn.close()
        except psycopg2.Error:
            pass


async def execute_query(query: str, params: Optional[tuple] = None) -> List[Dict]:
    """Execute a SELECT query and return rows as dicts; connection errors are retried"""

    def _execute() -> List[Dict]:
        for attempt in range(READ_RETRIES):
            conn = None
            try:
                conn = get_connection()
                with conn.cursor() as cursor:
                    cursor.execute(query, params)
                    results = cursor.fetchall()
                    return [dict(row) for row in results] if results else []
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                if conn:
                    return_connection(conn, is_broken=True)
                    conn = None
                if attempt < READ_RETRIES - 1:
                    logger.warning(f"Database connection retry {attempt + 1}/{READ_RETRIES}: {e}")
                    time.sleep(0.5 + (attempt * 0.5))
                    continue
                logger.error(f"💥 All database connection attempts failed after {READ_RETRIES} retries: {e}")
                raise DatabaseError(str(e)) from e
            except psycopg2.Error as e:
                logger.error(f"Database query error: {e}")
                raise DatabaseError(str(e)) from e
            finally:
                if conn:
                    return_connection(conn)
        raise DatabaseError("query failed")

    return await asyncio.to_thread(_execute)


async def execute_update(query: str, params: Optional[tuple] = None) -> int:
    """Execute an UPDATE/INSERT/DELETE in its own transaction and return affected rows (no retries)"""

    def _execute() -> int:
        conn = None
        broken = False
        try:
            conn = get_connection()
            conn.autocommit = False
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                rowcount = cursor.rowcount
            conn.commit()
            logger.debug(f"SQL UPDATE affected {rowcount} rows")
            return rowcount
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            broken = True
            logger.error(f"💥 Connection error in execute_update: {e}")
            raise DatabaseError(str(e)) from e
        except psycopg2.Error as e:
            logger.error(f"💥 SQL error in execute_update: {type(e).__name__}: {e}")
            if conn:
                try:
                    conn.rollback()
                except psycopg2.Error as rollback_error:
                    logger.error(f"Failed to rollback transaction: {rollback_error}")
                    broken = True
            raise DatabaseError(str(e)) from e
        finally:
            if conn:
                if not broken:
                    conn.autocommit = True
                return_connection(conn, is_broken=broken)

    return await asyncio.to_thread(_execute)


async def init_database():
    """Create storefront tables if they don't exist"""

    def _init():
        conn = get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS panel_orders (
                        id VARCHAR(64) PRIMARY KEY,
                        user_id VARCHAR(128) NOT NULL,
                        username VARCHAR(128),
                        plan VARCHAR(32) NOT NULL,
                        panel_username VARCHAR(64) NOT NULL,
                        panel_password TEXT,
                        amount NUMERIC(14, 2) NOT NULL,
                        fee NUMERIC(14, 2) NOT NULL DEFAULT 0,
                        total NUMERIC(14, 2) NOT NULL,
                        payment_number TEXT NOT NULL,
                        status VARCHAR(16) NOT NULL DEFAULT 'pending',
                        created_at TIMESTAMPTZ NOT NULL,
                        expires_at TIMESTAMPTZ NOT NULL,
                        completed_at TIMESTAMPTZ,
                        provisioning_started_at TIMESTAMPTZ,
                        provisioned_at TIMESTAMPTZ,
                        CONSTRAINT panel_orders_status_check
                            CHECK (status IN ('pending', 'completed', 'expired', 'error'))
                    )
                """)
                # Columns added after the first release
                cursor.execute("""
                    ALTER TABLE panel_orders
                        ADD COLUMN IF NOT EXISTS provisioning_started_at TIMESTAMPTZ,
                        ADD COLUMN IF NOT EXISTS provisioned_at TIMESTAMPTZ
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_panel_orders_panel_username
                    ON panel_orders (panel_username)
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_panel_orders_status_expires
                    ON panel_orders (status, expires_at)
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_panel_orders_user
                    ON panel_orders (user_id, created_at DESC)
                """)
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS panels (
                        username VARCHAR(64) PRIMARY KEY,
                        external_user_id INTEGER NOT NULL,
                        external_server_id INTEGER NOT NULL UNIQUE,
                        server_uuid VARCHAR(64),
                        server_identifier VARCHAR(32),
                        password TEXT NOT NULL,
                        email VARCHAR(255) NOT NULL,
                        login_url TEXT NOT NULL,
                        plan VARCHAR(32) NOT NULL,
                        specs JSONB NOT NULL DEFAULT '{}'::jsonb,
                        order_id VARCHAR(64) REFERENCES panel_orders (id),
                        owner_id VARCHAR(128),
                        created_at TIMESTAMPTZ NOT NULL,
                        expires_at TIMESTAMPTZ NOT NULL
                    )
                """)
                cursor.execute("""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_panels_order
                    ON panels (order_id) WHERE order_id IS NOT NULL
                """)
            logger.info("✅ Database tables initialized (panel_orders, panels)")
        finally:
            return_connection(conn)

    await asyncio.to_thread(_init)
