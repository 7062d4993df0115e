import logging
import os
import threading
import time
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator

import psycopg2
import psycopg2.extras
from psycopg2 import sql
from psycopg2.pool import ThreadedConnectionPool

logger = logging.getLogger(__name__)

Query = str | sql.Composable


class SqlAdapter:
    """Pooled, read-only Postgres access for the refresh stores. Knows nothing about FastAPI."""

    def __init__(self) -> None:
        self._pool: ThreadedConnectionPool | None = None
        self._pool_lock = threading.Lock()

    def _dsn(self) -> str:
        sslmode = os.getenv("DB_SSLMODE", "require")
        allowed_sslmodes = {"disable", "allow", "prefer", "require", "verify-ca", "verify-full"}
        if sslmode not in allowed_sslmodes:
            sslmode = "require"
        connect_timeout = int(os.getenv("DB_CONNECT_TIMEOUT_SECONDS", "5"))
        statement_timeout_ms = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "15000"))
        return (
            f"host={os.environ['DB_HOST']} "
            f"port={os.environ['DB_PORT']} "
            f"dbname={os.environ['DB_NAME']} "
            f"user={os.environ['DB_USER']} "
            f"password={os.environ['DB_PASSWORD']} "
            f"sslmode={sslmode} "
            f"connect_timeout={connect_timeout} "
            f"options='-c statement_timeout={statement_timeout_ms}'"
        )

    def _get_pool(self) -> ThreadedConnectionPool:
        if self._pool is None:
            with self._pool_lock:
                if self._pool is None:
                    minconn = int(os.getenv("DB_POOL_MIN", "1"))
                    maxconn = max(minconn, int(os.getenv("DB_POOL_MAX", "8")))
                    self._pool = ThreadedConnectionPool(minconn=minconn, maxconn=maxconn, dsn=self._dsn())
                    if os.getenv("DB_POOL_PREWARM", "1") == "1":
                        self.ping()
        return self._pool

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        pool = self._get_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            # Every statement here is a read; never leave a transaction open on a pooled connection.
            if not conn.closed:
                conn.rollback()
                pool.putconn(conn)
            else:
                pool.putconn(conn, close=True)

    def ping(self) -> bool:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                return cur.fetchone() is not None

    def fetch_rows(
        self,
        query: Query,
        params: tuple[Any, ...] = (),
        statement_timeout_ms: int | None = None,
    ) -> list[dict[str, Any]]:
        started = time.perf_counter()
        with self._connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                if statement_timeout_ms is not None:
                    cur.execute(f"SET LOCAL statement_timeout = {int(statement_timeout_ms)}")
                cur.execute(query, params)
                rows = [self._normalize_row(row) for row in cur.fetchall()]
            self._log_slow_query(started, self._preview(query, conn), len(rows), statement_timeout_ms)
        return rows

    def fetch_value(
        self,
        query: Query,
        params: tuple[Any, ...] = (),
        statement_timeout_ms: int | None = None,
    ) -> Any:
        rows = self.fetch_rows(query, params, statement_timeout_ms=statement_timeout_ms)
        if not rows:
            return None
        return next(iter(rows[0].values()), None)

    @staticmethod
    def _preview(query: Query, conn: Any) -> str:
        text = query.as_string(conn) if isinstance(query, sql.Composable) else query
        return " ".join(text.split())[:180]

    @staticmethod
    def _log_slow_query(
        started: float,
        query_preview: str,
        row_count: int,
        statement_timeout_ms: int | None,
    ) -> None:
        if os.getenv("DB_LOG_SLOW_QUERIES", "0") != "1":
            return
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        if elapsed_ms < float(os.getenv("DB_SLOW_QUERY_THRESHOLD_MS", "200")):
            return
        logger.warning(
            "Slow SQL query %.2fms rows=%s timeout_ms=%s sql=%s",
            elapsed_ms,
            row_count,
            statement_timeout_ms,
            query_preview,
        )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    @staticmethod
    def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
        return {key: float(value) if isinstance(value, Decimal) else value for key, value in row.items()}
