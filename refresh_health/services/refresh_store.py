from __future__ import annotations

import os
from datetime import datetime
from typing import Any

from psycopg2 import sql

from refresh_health.services.health.models import RefreshConfig
from refresh_health.services.sql_adapter import SqlAdapter

_ROW_COUNT_TIMEOUT_MS = int(os.getenv("REFRESH_ROW_COUNT_TIMEOUT_MS", "5000"))
_AUDIT_RECENT_LIMIT = 100


def _qualified(name: str) -> sql.Composable:
    """``schema.table`` or bare ``table`` as a safely quoted identifier."""
    return sql.Identifier(*[part for part in name.split(".") if part])


class RefreshStore:
    """Read access to refresh configuration, both run logs and table row counts.

    Every method raises on failure; callers decide whether that is fatal.
    """

    def __init__(
        self,
        sql_adapter: SqlAdapter,
        refresh_schema: str | None = None,
        sync_log_table: str | None = None,
    ):
        self.sql = sql_adapter
        self.refresh_schema = refresh_schema or os.getenv("REFRESH_SCHEMA", "sqp")
        self.sync_log_table = sync_log_table or os.getenv("REFRESH_SYNC_LOG_TABLE", "public.sync_log")

    def _table(self, name: str) -> sql.Composable:
        return sql.Identifier(self.refresh_schema, name)

    def fetch_configs(self) -> list[RefreshConfig]:
        query = sql.SQL(
            "SELECT table_name, table_schema, is_enabled, last_refresh_at, next_refresh_at, "
            "refresh_frequency_hours, priority FROM {} ORDER BY id"
        ).format(self._table("refresh_config"))
        return [RefreshConfig.from_row(row) for row in self.sql.fetch_rows(query)]

    def fetch_sync_logs(self, since: datetime) -> list[dict[str, Any]]:
        query = sql.SQL(
            "SELECT id, table_name, started_at, completed_at, status, error_message "
            "FROM {} WHERE started_at >= %s ORDER BY started_at DESC"
        ).format(_qualified(self.sync_log_table))
        return self.sql.fetch_rows(query, (since,))

    def fetch_audit_logs(self, since: datetime, limit: int | None = None) -> list[dict[str, Any]]:
        query = sql.SQL(
            "SELECT id, table_schema, table_name, refresh_started_at, refresh_completed_at, status, "
            "rows_processed, error_message FROM {} WHERE refresh_started_at >= %s "
            "ORDER BY refresh_started_at DESC"
        ).format(self._table("refresh_audit_log"))
        params: tuple[Any, ...] = (since,)
        if limit is not None:
            query = query + sql.SQL(" LIMIT %s")
            params = (since, int(limit))
        return self.sql.fetch_rows(query, params)

    def fetch_recent_audit_logs(self, since: datetime) -> list[dict[str, Any]]:
        return self.fetch_audit_logs(since, limit=_AUDIT_RECENT_LIMIT)

    def count_rows(self, table_schema: str, table_name: str) -> int | None:
        query = sql.SQL("SELECT count(*) AS row_count FROM {}").format(
            sql.Identifier(table_schema, table_name) if table_schema else sql.Identifier(table_name)
        )
        value = self.sql.fetch_value(query, statement_timeout_ms=_ROW_COUNT_TIMEOUT_MS)
        return int(value) if value is not None else None

    def ping(self) -> bool:
        return self.sql.ping()

    def fetch_completed_audit_logs(self, since: datetime, table_name: str | None = None) -> list[dict[str, Any]]:
        """Finished audit-log refreshes since ``since``, oldest first."""
        query = sql.SQL(
            "SELECT id, table_schema, table_name, refresh_started_at, refresh_completed_at, status, "
            "rows_processed, execution_time_ms, error_message FROM {} "
            "WHERE refresh_started_at >= %s AND refresh_completed_at IS NOT NULL"
        ).format(self._table("refresh_audit_log"))
        params: tuple[Any, ...] = (since,)
        if table_name:
            query = query + sql.SQL(" AND table_name = %s")
            params = (since, table_name)
        return self.sql.fetch_rows(query + sql.SQL(" ORDER BY refresh_started_at ASC"), params)

    def fetch_latest_data_date(self) -> Any:
        query = sql.SQL("SELECT max(start_date) AS latest FROM {}").format(self._table("asin_performance_data"))
        return self.sql.fetch_value(query)

    def fetch_pipeline_health(self) -> dict[str, Any] | None:
        rows = self.sql.fetch_rows(sql.SQL("SELECT * FROM {} LIMIT 1").format(self._table("pipeline_health")))
        return rows[0] if rows else None
