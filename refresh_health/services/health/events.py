from __future__ import annotations

import logging
from typing import Any, Iterable

from refresh_health.services.health.models import (
    SOURCE_AUDIT_LOG,
    SOURCE_SYNC_LOG,
    RunEvent,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


class RunLogAdapter:
    """Maps one raw log source onto ``RunEvent``.

    Source-specific quirks (column names, schema availability) stay here so
    the metric/trend code never branches on where an event came from.
    """

    source = ""
    started_column = "started_at"
    completed_column = "completed_at"

    def matches(self, row: dict[str, Any], table_name: str, table_schema: str) -> bool:
        return row.get("table_name") == table_name

    def to_event(self, row: dict[str, Any]) -> RunEvent | None:
        started_at = parse_timestamp(row.get(self.started_column))
        if started_at is None:
            logger.debug("Skipping %s row without usable start time: %s", self.source, row.get("id"))
            return None
        return RunEvent(
            table_name=str(row.get("table_name", "")),
            table_schema=self._schema(row),
            started_at=started_at,
            completed_at=parse_timestamp(row.get(self.completed_column)),
            status=str(row.get("status") or ""),
            error_message=row.get("error_message"),
            source=self.source,
            rows_processed=self._rows_processed(row),
            run_id=row.get("id"),
        )

    def _schema(self, row: dict[str, Any]) -> str | None:
        return None

    def _rows_processed(self, row: dict[str, Any]) -> int | None:
        return None

    def events_for(self, rows: Iterable[dict[str, Any]], table_name: str, table_schema: str) -> list[RunEvent]:
        events = []
        for row in rows:
            if not self.matches(row, table_name, table_schema):
                continue
            event = self.to_event(row)
            if event is not None:
                events.append(event)
        return events


class SyncLogAdapter(RunLogAdapter):
    # The sync log predates per-schema tracking, so it matches by name only.
    source = SOURCE_SYNC_LOG


class AuditLogAdapter(RunLogAdapter):
    source = SOURCE_AUDIT_LOG
    started_column = "refresh_started_at"
    completed_column = "refresh_completed_at"

    def matches(self, row: dict[str, Any], table_name: str, table_schema: str) -> bool:
        return row.get("table_name") == table_name and row.get("table_schema") == table_schema

    def _schema(self, row: dict[str, Any]) -> str | None:
        return row.get("table_schema")

    def _rows_processed(self, row: dict[str, Any]) -> int | None:
        value = row.get("rows_processed")
        return int(value) if value is not None else None


SYNC_LOG_ADAPTER = SyncLogAdapter()
AUDIT_LOG_ADAPTER = AuditLogAdapter()


def sort_newest_first(events: Iterable[RunEvent]) -> list[RunEvent]:
    return sorted(events, key=lambda e: e.started_at, reverse=True)


def reconcile_events(
    table_name: str,
    table_schema: str,
    sync_logs: Iterable[dict[str, Any]] | None,
    audit_logs: Iterable[dict[str, Any]] | None,
) -> list[RunEvent]:
    """Merge both log sources for one table into a single newest-first stream.

    ``None`` stands for a source that failed to load and contributes nothing.
    Incomplete runs are kept; consumers decide what counts.
    """
    merged = SYNC_LOG_ADAPTER.events_for(sync_logs or [], table_name, table_schema)
    merged.extend(AUDIT_LOG_ADAPTER.events_for(audit_logs or [], table_name, table_schema))
    return sort_newest_first(merged)
