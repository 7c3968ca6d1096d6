"""Base Repository: query helpers shared by every repository.

Two families:

- query_one(), query_all(), execute() borrow a pooled connection for a
  single statement and give it back (writes are committed).
- fetch_one(), fetch_all(), run() take the cursor of a transaction the
  caller already holds, so several repositories can write atomically:

    with transaction() as conn:
        cursor = get_cursor(conn)
        plan = plan_repo.get_active(cursor, firm_id, invoice_id)
        step_repo.cancel_open_steps(cursor, plan['id'])
"""
from contextlib import contextmanager

from apflow.database import get_db, get_cursor, release_db


class BaseRepository:

    @contextmanager
    def _pooled_cursor(self):
        conn = get_db()
        try:
            yield conn, get_cursor(conn)
        finally:
            release_db(conn)

    def query_one(self, sql, params=None):
        """Single row as dict, or None."""
        with self._pooled_cursor() as (_, cursor):
            cursor.execute(sql, params or ())
            row = cursor.fetchone()
            return dict(row) if row else None

    def query_all(self, sql, params=None):
        with self._pooled_cursor() as (_, cursor):
            cursor.execute(sql, params or ())
            return [dict(r) for r in cursor.fetchall()]

    def execute(self, sql, params=None, returning=False):
        """Run one INSERT/UPDATE/DELETE and commit.

        Returns:
            the RETURNING row as dict if returning=True, else the rowcount
        """
        with self._pooled_cursor() as (conn, cursor):
            try:
                cursor.execute(sql, params or ())
                result = cursor.fetchone() if returning else cursor.rowcount
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            if returning:
                return dict(result) if result else None
            return result

    # ---- Cursor-bound helpers (caller owns the transaction) ----

    def fetch_one(self, cursor, sql, params=None):
        cursor.execute(sql, params or ())
        row = cursor.fetchone()
        return dict(row) if row else None

    def fetch_all(self, cursor, sql, params=None):
        cursor.execute(sql, params or ())
        return [dict(r) for r in cursor.fetchall()]

    def run(self, cursor, sql, params=None):
        """Execute a write on the caller's cursor and return rowcount."""
        cursor.execute(sql, params or ())
        return cursor.rowcount
