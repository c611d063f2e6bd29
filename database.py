"""
PostgreSQL access for the site records the provisioning core reads and writes
Pooled psycopg2 connections, raw SQL, blocking work pushed off the event loop
"""

import os
import time
import asyncio
import logging
import threading
from typing import Optional, Dict, List

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)

_connection_pool = None
_pool_lock = threading.Lock()

# Strict mode raises instead of degrading to empty results
TEST_STRICT_DB = os.getenv('TEST_STRICT_DB', 'false').lower() == 'true'

DEAD_CONNECTION_MARKERS = ('connection closed', 'server closed', 'ssl connection', 'timeout')

def _connection_kwargs() -> Dict:
    return dict(
        cursor_factory=RealDictCursor,
        connect_timeout=5,
        keepalives_idle=600,
        keepalives_interval=30,
        keepalives_count=3,
        sslmode=os.getenv('DATABASE_SSLMODE', 'prefer')
    )

def get_connection_pool():
    """Get or create the database connection pool"""
    global _connection_pool
    with _pool_lock:
        if _connection_pool is None:
            database_url = os.getenv('DATABASE_URL')
            if not database_url:
                raise ValueError("DATABASE_URL environment variable not found")

            _connection_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=int(os.getenv('DATABASE_POOL_MIN', '1')),
                maxconn=int(os.getenv('DATABASE_POOL_MAX', '10')),
                dsn=database_url,
                **_connection_kwargs()
            )
            logger.info("✅ Database connection pool created")
    return _connection_pool

def recreate_connection_pool() -> bool:
    """Drop the pool so the next caller reconnects from scratch"""
    global _connection_pool
    with _pool_lock:
        if _connection_pool is not None:
            try:
                _connection_pool.closeall()
            except psycopg2.Error as close_error:
                logger.warning(f"⚠️ Error closing existing pool: {close_error}")
            _connection_pool = None
    logger.info("🔄 Database connection pool reset")
    return True

def get_connection():
    conn = get_connection_pool().getconn()
    conn.autocommit = True
    return conn

def return_connection(conn, is_broken: bool = False):
    try:
        get_connection_pool().putconn(conn, close=is_broken)
    except (psycopg2.Error, ValueError) as e:
        logger.debug(f"Closing connection outside pool: {e}")
        conn.close()

def _handle_connection_error(e: Exception, operation: str):
    if any(marker in str(e).lower() for marker in DEAD_CONNECTION_MARKERS):
        logger.warning(f"🔄 Detected dead connection during {operation}, recreating pool: {e}")
        recreate_connection_pool()

async def execute_query(query: str, params: Optional[tuple] = None, raise_on_error: bool = False) -> List[Dict]:
    """
    Execute a SELECT query and return rows as dicts, retrying connection failures

    Errors degrade to an empty result unless raise_on_error (or TEST_STRICT_DB) is set;
    callers that must tell "no rows" from "database down" pass raise_on_error=True.
    """
    strict = raise_on_error or TEST_STRICT_DB

    def _execute() -> List[Dict]:
        max_retries = 3
        for attempt in range(max_retries):
            conn = None
            broken = False
            try:
                conn = get_connection()
                with conn.cursor() as cursor:
                    cursor.execute(query, params)
                    results = cursor.fetchall()
                    return [dict(row) for row in results] if results else []
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                broken = True
                _handle_connection_error(e, "query")
                if attempt < max_retries - 1:
                    logger.warning(f"Database connection retry {attempt + 1}/{max_retries}: {e}")
                    time.sleep(0.5 + (attempt * 0.5))
                    continue
                logger.error(f"❌ All database connection attempts failed after {max_retries} retries: {e}")
                if strict:
                    raise
                return []
            except psycopg2.Error as e:
                logger.error(f"❌ Database query error: {e}")
                if strict:
                    raise
                return []
            finally:
                if conn is not None:
                    return_connection(conn, is_broken=broken)
        return []

    return await asyncio.to_thread(_execute)

async def execute_update(query: str, params: Optional[tuple] = None) -> int:
    """Execute an UPDATE/INSERT/DELETE and return affected rows (writes are never retried)"""

    def _execute() -> int:
        conn = None
        broken = False
        try:
            conn = get_connection()
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                return cursor.rowcount
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            broken = True
            _handle_connection_error(e, "update")
            logger.error(f"❌ Database update connection failed: {e}")
            if TEST_STRICT_DB:
                raise
            return 0
        except psycopg2.Error as e:
            logger.error(f"❌ Database update operation failed: {e}")
            if TEST_STRICT_DB:
                raise
            return 0
        finally:
            if conn is not None:
                return_connection(conn, is_broken=broken)

    return await asyncio.to_thread(_execute)
