from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any

from refresh_health.services.health.models import parse_timestamp, round_half_up

DEFAULT_DAYS = 7
MAX_DAYS = 30
RECENT_ERRORS_PER_TABLE = 3


def clamp_days(value: Any) -> int:
    try:
        days = int(value) if value is not None else DEFAULT_DAYS
    except (TypeError, ValueError):
        days = DEFAULT_DAYS
    return min(MAX_DAYS, max(1, days))


def _duration_ms(row: dict[str, Any], started: datetime, completed: datetime | None) -> float:
    value = row.get("execution_time_ms")
    if value is not None:
        return float(value)
    if completed is None:
        return 0.0
    return max(0.0, (completed - started).total_seconds() * 1000.0)


def _rate(part: int, total: int) -> int:
    return round_half_up(part / total * 100) if total else 0


def _avg_minutes(total_ms: float, count: int) -> int:
    return round_half_up(total_ms / count / 60000.0) if count else 0


@dataclass
class _Bucket:
    total: int = 0
    successful: int = 0
    failed: int = 0
    rows: int = 0
    duration_ms: float = 0.0

    def add(self, status: str, rows: int, duration_ms: float) -> None:
        self.total += 1
        if status == "success":
            self.successful += 1
        elif status == "failed":
            self.failed += 1
        self.rows += rows
        self.duration_ms += duration_ms


@dataclass
class _DayBucket(_Bucket):
    tables: set[str] = field(default_factory=set)


@dataclass
class _TableBucket(_Bucket):
    last_refresh: datetime | None = None
    last_status: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)


def build_refresh_metrics(
    audit_rows: list[dict[str, Any]],
    now: datetime,
    days: int = DEFAULT_DAYS,
    tz: tzinfo = timezone.utc,
) -> dict[str, Any]:
    """Daily and per-table audit-log statistics over the last ``days`` days.

    ``audit_rows`` are finished refreshes, oldest first, already limited to
    the period (and to one table when the caller filtered).
    """
    by_day: dict[date, _DayBucket] = {}
    by_table: dict[str, _TableBucket] = {}
    overall = _Bucket()

    for row in audit_rows:
        started = parse_timestamp(row.get("refresh_started_at"))
        if started is None:
            continue
        completed = parse_timestamp(row.get("refresh_completed_at"))
        status = str(row.get("status") or "")
        rows = int(row.get("rows_processed") or 0)
        duration = _duration_ms(row, started, completed)
        table_name = str(row.get("table_name", ""))

        overall.add(status, rows, duration)

        day = by_day.setdefault(started.astimezone(tz).date(), _DayBucket())
        day.add(status, rows, duration)
        day.tables.add(table_name)

        table = by_table.setdefault(table_name, _TableBucket())
        table.add(status, rows, duration)
        if completed is not None and (table.last_refresh is None or completed > table.last_refresh):
            table.last_refresh = completed
            table.last_status = status
        if status == "failed" and row.get("error_message"):
            table.errors.append({"timestamp": started.isoformat(), "error": row["error_message"]})

    daily_metrics = [
        {
            "date": day.isoformat(),
            "total_refreshes": bucket.total,
            "successful": bucket.successful,
            "failed": bucket.failed,
            "success_rate": _rate(bucket.successful, bucket.total),
            "total_rows": bucket.rows,
            "average_duration_minutes": _avg_minutes(bucket.duration_ms, bucket.total),
            "unique_tables": len(bucket.tables),
        }
        for day, bucket in sorted(by_day.items())
    ]

    table_metrics = [
        {
            "table_name": name,
            "total_refreshes": bucket.total,
            "successful": bucket.successful,
            "failed": bucket.failed,
            "success_rate": _rate(bucket.successful, bucket.total),
            "average_duration_minutes": _avg_minutes(bucket.duration_ms, bucket.total),
            "average_rows_per_refresh": round_half_up(bucket.rows / bucket.successful) if bucket.successful else 0,
            "total_rows_processed": bucket.rows,
            "last_refresh": bucket.last_refresh.isoformat() if bucket.last_refresh else None,
            "last_status": bucket.last_status,
            "recent_errors": bucket.errors[-RECENT_ERRORS_PER_TABLE:],
        }
        for name, bucket in by_table.items()
    ]
    # Busiest table first; ties keep first-seen order.
    table_metrics.sort(key=lambda t: -t["total_refreshes"])

    busiest_day = None
    for day in daily_metrics:
        if busiest_day is None or day["total_refreshes"] > busiest_day["total_refreshes"]:
            busiest_day = day
    most_failed_table = None
    for table in table_metrics:
        if table["failed"] > (most_failed_table["failed"] if most_failed_table else 0):
            most_failed_table = table

    summary = {
        "period_days": days,
        "total_refreshes": overall.total,
        "successful": overall.successful,
        "failed": overall.failed,
        "overall_success_rate": _rate(overall.successful, overall.total),
        "total_rows_processed": overall.rows,
        "average_refresh_time_minutes": _avg_minutes(overall.duration_ms, overall.total),
        "busiest_day": busiest_day,
        "most_failed_table": most_failed_table,
    }

    return {
        "summary": summary,
        "daily_metrics": daily_metrics,
        "table_metrics": table_metrics,
        "period": {
            "start": (now - timedelta(days=days)).isoformat(),
            "end": now.isoformat(),
            "days": days,
        },
    }
