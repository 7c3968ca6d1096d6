"""PostgreSQL access for apflow.

One process-wide psycopg2 ThreadedConnectionPool, created on first use.
Connections handed out by get_db() are in autocommit mode; transaction()
switches a connection to explicit commit/rollback for the length of a block.
"""
import os
import time
import logging
import threading
from contextlib import contextmanager

import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor


logger = logging.getLogger('apflow.database')

DATABASE_URL = os.environ.get('DATABASE_URL')

if not DATABASE_URL:
    raise ValueError('DATABASE_URL environment variable is required (PostgreSQL DSN)')

POOL_MIN_CONN = int(os.environ.get('DB_POOL_MIN_CONN', '2'))
POOL_MAX_CONN = int(os.environ.get('DB_POOL_MAX_CONN', '8'))
POOL_GETCONN_TIMEOUT = int(os.environ.get('DB_POOL_TIMEOUT', '10'))
STALE_CONN_RETRIES = 3

# An engine call keeps its connection until commit, so POOL_MAX_CONN caps
# concurrent approval actions per worker.
_connection_pool = None
_pool_lock = threading.Lock()


def _get_pool():
    global _connection_pool
    if _connection_pool is None:
        with _pool_lock:
            if _connection_pool is None:
                _connection_pool = pool.ThreadedConnectionPool(
                    minconn=POOL_MIN_CONN,
                    maxconn=POOL_MAX_CONN,
                    dsn=DATABASE_URL,
                    connect_timeout=5,
                    keepalives=1,
                    keepalives_idle=30,
                    keepalives_interval=10,
                    keepalives_count=5,
                )
                logger.info(f'Pool ready ({POOL_MIN_CONN}..{POOL_MAX_CONN} connections)')
    return _connection_pool


def _getconn_with_timeout(timeout=None):
    """Check out a pooled connection, polling while the pool is exhausted.

    ThreadedConnectionPool raises PoolError immediately when every connection
    is in use; wait up to `timeout` seconds for one to come back instead.
    """
    if timeout is None:
        timeout = POOL_GETCONN_TIMEOUT
    deadline = time.monotonic() + timeout
    while True:
        try:
            return _get_pool().getconn()
        except pool.PoolError:
            if time.monotonic() >= deadline:
                raise psycopg2.OperationalError(
                    f"No free database connection after {timeout}s")
            time.sleep(0.05)


def _discard(conn):
    try:
        _get_pool().putconn(conn, close=True)
    except Exception as e:
        logger.debug(f'Discarding connection failed: {e}')


def get_db():
    """Return a live autocommit connection from the pool.

    Connections the server has dropped are closed and replaced, up to
    STALE_CONN_RETRIES times.
    """
    last_error = None
    for attempt in range(1, STALE_CONN_RETRIES + 1):
        conn = _getconn_with_timeout()
        try:
            with conn.cursor() as cur:
                cur.execute('SELECT 1')
            conn.rollback()
            conn.autocommit = True
            return conn
        except (psycopg2.OperationalError, psycopg2.InterfaceError, psycopg2.DatabaseError) as e:
            last_error = e
            logger.warning(f'Dropping stale connection ({attempt}/{STALE_CONN_RETRIES}): {e}')
            _discard(conn)

    raise psycopg2.OperationalError(f'Could not obtain a healthy connection: {last_error}')


def release_db(conn):
    """Give a connection back to the pool, closing it if it is broken."""
    if not conn or _connection_pool is None:
        return
    if conn.closed:
        _discard(conn)
        return
    try:
        conn.autocommit = False
        _connection_pool.putconn(conn)
    except Exception as e:
        logger.warning(f'Returning connection to pool failed, closing it: {e}')
        _discard(conn)


@contextmanager
def transaction():
    """Run a block as one database transaction.

        with transaction() as conn:
            cursor = get_cursor(conn)
            ...

    Commits when the block exits normally, rolls back and re-raises otherwise.
    """
    conn = get_db()
    try:
        conn.autocommit = False
        yield conn
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.info(f'Transaction rolled back: {e}')
        raise
    finally:
        release_db(conn)


@contextmanager
def get_db_connection():
    """Borrow a connection for read-only work outside an explicit transaction."""
    conn = get_db()
    try:
        yield conn
    finally:
        release_db(conn)


def get_cursor(conn):
    return conn.cursor(cursor_factory=RealDictCursor)


_PING_CACHE_SECONDS = 5
_ping_cache = {'ok': False, 'ts': 0.0}


def ping_db():
    """True if the database answers SELECT 1; a success is cached briefly."""
    now = time.time()
    if _ping_cache['ok'] and now - _ping_cache['ts'] < _PING_CACHE_SECONDS:
        return True

    try:
        with get_db_connection() as conn, conn.cursor() as cur:
            cur.execute('SELECT 1')
    except Exception as e:
        logger.error(f'Database ping failed: {e}')
        _ping_cache['ok'] = False
        return False

    _ping_cache.update(ok=True, ts=now)
    return True


def init_db():
    """Create the approval schema unless it already exists."""
    conn = get_db()
    cursor = get_cursor(conn)
    try:
        cursor.execute("SELECT to_regclass('public.invoice_approval_plans') IS NOT NULL AS present")
        if cursor.fetchone()['present']:
            logger.info('Approval schema present, skipping init_db()')
            return

        from apflow.migrations.init_schema import create_schema
        conn.autocommit = False
        create_schema(conn, cursor)
        conn.commit()
        logger.info('Approval schema created')
    except Exception:
        conn.rollback()
        raise
    finally:
        release_db(conn)
