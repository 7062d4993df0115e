from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from refresh_health.services.health.events import AUDIT_LOG_ADAPTER, sort_newest_first
from refresh_health.services.health.models import RefreshConfig, RunEvent
from refresh_health.services.health.status import STALE_FACTOR

RECENT_ACTIVITY_LIMIT = 10


def _table_status(config: RefreshConfig, recent: RunEvent | None, hours_until_refresh: float | None) -> str:
    if recent is not None:
        return recent.status
    if hours_until_refresh is not None and hours_until_refresh < 0:
        return "overdue"
    if not config.is_enabled:
        return "disabled"
    return "pending"


def _is_stale(config: RefreshConfig, now: datetime) -> bool:
    if config.last_refresh_at is None:
        return False
    return now - config.last_refresh_at > timedelta(hours=config.refresh_frequency_hours * STALE_FACTOR)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def build_overview(configs: list[RefreshConfig], audit_rows: list[dict[str, Any]], now: datetime) -> dict[str, Any]:
    """At-a-glance refresh status over the last day of audit-log activity."""
    events = sort_newest_first(
        e for e in (AUDIT_LOG_ADAPTER.to_event(row) for row in audit_rows) if e is not None
    )
    ordered_configs = sorted(configs, key=lambda c: c.priority, reverse=True)

    tables = []
    for config in ordered_configs:
        hours_until = None
        if config.next_refresh_at is not None:
            hours_until = (config.next_refresh_at - now).total_seconds() / 3600.0
        recent = next(
            (
                e
                for e in events
                if e.table_name == config.table_name and e.table_schema == config.table_schema
            ),
            None,
        )
        tables.append(
            {
                "table_name": config.table_name,
                "schema": config.table_schema,
                "enabled": config.is_enabled,
                "status": _table_status(config, recent, hours_until),
                "is_stale": _is_stale(config, now),
                "last_refresh": _iso(config.last_refresh_at),
                "next_refresh": _iso(config.next_refresh_at),
                "hours_until_refresh": hours_until,
                "frequency_hours": config.refresh_frequency_hours,
                "priority": config.priority,
                "recent_error": recent.error_message if recent is not None and recent.status == "failed" else None,
            }
        )

    statistics = {
        "total_tables": len(tables),
        "enabled_tables": sum(1 for t in tables if t["enabled"]),
        "disabled_tables": sum(1 for t in tables if not t["enabled"]),
        "successful_today": sum(1 for e in events if e.status == "success"),
        "failed_today": sum(1 for e in events if e.status == "failed"),
        "running_now": sum(1 for e in events if e.status == "running"),
        "stale_tables": sum(1 for t in tables if t["is_stale"]),
        "overdue_tables": sum(1 for t in tables if t["status"] == "overdue"),
    }

    overall = "healthy"
    if statistics["failed_today"] > 0 or statistics["overdue_tables"] > len(tables) / 2:
        overall = "error"
    elif statistics["stale_tables"] > 0 or statistics["overdue_tables"] > 0:
        overall = "warning"

    recent_activity = [
        {
            "id": e.run_id,
            "table_name": e.table_name,
            "status": e.status,
            "started_at": _iso(e.started_at),
            "completed_at": _iso(e.completed_at),
            "duration_minutes": e.duration_minutes,
            "rows_processed": e.rows_processed,
            "error": e.error_message,
        }
        for e in events[:RECENT_ACTIVITY_LIMIT]
    ]

    return {
        "overall_status": overall,
        "statistics": statistics,
        "tables": tables,
        "recent_activity": recent_activity,
        "last_updated": now.isoformat(),
    }
