"""
PostgreSQL client with connection pooling, RLS tenant isolation and
explicit transactions.

Uses psycopg2 with ThreadedConnectionPool. Tenant isolation enforced via
PostgreSQL Row Level Security - automatically reads tenant ID from contextvar
and sets app.current_tenant_id on each connection.

Security: No tenant context = see nothing (RLS blocks all rows).
"""

import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from utils.tenant_context import get_current_tenant_id_or_none

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False

# Connection pinned by an open transaction() in this context
_transaction_conn: ContextVar[Any] = ContextVar("postgres_transaction_conn", default=None)


class PostgresClient:
    """
    PostgreSQL client with automatic RLS context from contextvar.

    Usage:
        db = PostgresClient(database_url)

        with tenant_context(tenant_id):
            rates = db.execute("SELECT * FROM fee_rates")  # Tenant's rows only

            # Several statements committed together
            with db.transaction():
                db.execute("UPDATE invoices ...")
                db.execute("UPDATE operator_account_balances ...")
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str):
        self._database_url = database_url
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=2,
                    maxconn=20,
                    dsn=self._database_url,
                    connect_timeout=30,
                )

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    def _set_tenant(self, conn) -> None:
        tenant_id = get_current_tenant_id_or_none()
        with conn.cursor() as cur:
            if tenant_id is not None:
                cur.execute("SET app.current_tenant_id = %s", (str(tenant_id),))
            else:
                # RLS policies cast to uuid, which fails on empty string = no rows
                cur.execute("SET app.current_tenant_id = ''")

    @contextmanager
    def get_connection(self):
        """
        Get connection with RLS context from contextvar.

        Inside transaction() this yields the pinned connection.
        """
        pinned = _transaction_conn.get()
        if pinned is not None:
            yield pinned
            return

        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")
            self._set_tenant(conn)
            yield conn

        except Exception:
            # Don't hand an aborted transaction back to the pool
            if conn:
                conn.rollback()
            raise

        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self):
        """
        Run enclosed statements on one connection, committed together.

        Rolls back and re-raises on any exception. Nested calls join the
        outer transaction.
        """
        if _transaction_conn.get() is not None:
            yield
            return

        with self.get_connection() as conn:
            token = _transaction_conn.set(conn)
            try:
                yield
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                _transaction_conn.reset(token)

    @property
    def in_transaction(self) -> bool:
        return _transaction_conn.get() is not None

    def _commit(self, conn) -> None:
        if not self.in_transaction:
            conn.commit()

    def _convert_params(self, params: Tuple | Dict | None) -> Tuple | Dict | None:
        """Convert UUID objects to strings."""
        if params is None:
            return None

        def convert(value: Any) -> Any:
            if isinstance(value, UUID):
                return str(value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                if cur.description:
                    rows = [dict(row) for row in cur.fetchall()]
                    self._commit(conn)
                    return rows
                self._commit(conn)
                return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                result = cur.fetchone()
                self._commit(conn)
                return result[0] if result else None

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
