"""Database connection handling shared by the queue and task stores."""
import threading
from pathlib import Path
from contextlib import contextmanager
from typing import Optional

import psycopg2
from psycopg2 import pool
from psycopg2.extensions import ISOLATION_LEVEL_REPEATABLE_READ
from psycopg2.extras import RealDictCursor

from notifyqueue import settings
from notifyqueue.errors import StorageError
from notifyqueue.logging_conf import logger

SCHEMA_FILE = Path(__file__).resolve().parent / "schema.sql"


class Database:
    """Thread-safe connection pool with commit/rollback helpers."""

    def __init__(self, dsn: Optional[str] = None, min_conn: Optional[int] = None, max_conn: Optional[int] = None):
        self.dsn = dsn or settings.DATABASE_URL
        self.min_conn = min_conn or settings.DB_POOL_MIN
        self.max_conn = max_conn or settings.DB_POOL_MAX
        self._pool = None
        self._pool_lock = threading.Lock()

    @property
    def pool(self):
        """Get or create the connection pool."""
        if self._pool is None or self._pool.closed:
            with self._pool_lock:
                if self._pool is None or self._pool.closed:
                    try:
                        self._pool = pool.ThreadedConnectionPool(self.min_conn, self.max_conn, self.dsn)
                    except psycopg2.Error as e:
                        raise StorageError(f"cannot connect to database: {e}") from e
        return self._pool

    def close(self):
        """Close all pooled connections."""
        if self._pool and not self._pool.closed:
            self._pool.closeall()
            self._pool = None

    @contextmanager
    def transaction(self, isolation_level=None):
        """Hold one connection for a multi-statement unit of work.

        Commits when the block exits normally, rolls back otherwise. Any
        psycopg2 failure surfaces as StorageError.
        """
        try:
            conn = self.pool.getconn()
        except psycopg2.Error as e:
            raise StorageError(f"no database connection available: {e}") from e
        broken = False
        try:
            if isolation_level is not None:
                conn.set_session(isolation_level=isolation_level)
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            broken = self._rollback(conn)
            raise StorageError(str(e).strip() or e.__class__.__name__) from e
        except BaseException:
            broken = self._rollback(conn)
            raise
        finally:
            if isolation_level is not None and not conn.closed and not broken:
                conn.set_session(isolation_level="DEFAULT")
            self.pool.putconn(conn, close=broken or bool(conn.closed))

    @contextmanager
    def cursor(self):
        """Context manager for cursor with auto-commit/rollback."""
        with self.transaction() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cur
            finally:
                cur.close()

    @contextmanager
    def snapshot(self):
        """Read-only cursor over a single consistent snapshot."""
        with self.transaction(isolation_level=ISOLATION_LEVEL_REPEATABLE_READ) as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cur
            finally:
                cur.close()

    def apply_schema(self):
        """Create the queue and task tables if they are missing."""
        with self.cursor() as cur:
            cur.execute(SCHEMA_FILE.read_text())
        logger.info("Database schema applied")

    def _rollback(self, conn) -> bool:
        """Roll back; returns True when the connection is unusable."""
        if conn.closed:
            return True
        try:
            conn.rollback()
            return False
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed, discarding connection: {e}")
            return True
