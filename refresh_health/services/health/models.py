from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

RUN_STATUSES = ("success", "failed", "running", "warning")
TABLE_STATUSES = ("active", "stale", "error", "disabled")

SOURCE_SYNC_LOG = "sync_log"
SOURCE_AUDIT_LOG = "audit_log"


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, matching the dashboard's historical numbers."""
    return int(math.floor(value + 0.5))


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce DB/JSON timestamps into aware datetimes; naive values are treated as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    if isinstance(val, (int, float)):
        return bool(val)
    if isinstance(val, str):
        s = val.strip().lower()
        if s in {"true", "t", "1", "yes", "y", "on"}:
            return True
        if s in {"false", "f", "0", "no", "n", "off", ""}:
            return False
    return bool(val)


@dataclass(frozen=True)
class RefreshConfig:
    table_name: str
    table_schema: str
    is_enabled: bool = True
    last_refresh_at: datetime | None = None
    next_refresh_at: datetime | None = None
    refresh_frequency_hours: float = 24
    priority: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RefreshConfig":
        frequency = row.get("refresh_frequency_hours")
        return cls(
            table_name=str(row.get("table_name", "")),
            table_schema=str(row.get("table_schema") or ""),
            # Missing column defaults to enabled, like the table DDL.
            is_enabled=_as_bool(row.get("is_enabled", True)),
            last_refresh_at=parse_timestamp(row.get("last_refresh_at")),
            next_refresh_at=parse_timestamp(row.get("next_refresh_at")),
            refresh_frequency_hours=float(frequency) if frequency is not None else 24.0,
            priority=int(row.get("priority") or 0),
        )


@dataclass(frozen=True)
class RunEvent:
    table_name: str
    table_schema: str | None
    started_at: datetime
    completed_at: datetime | None
    status: str
    error_message: str | None
    source: str
    rows_processed: int | None = None
    run_id: Any = None

    @property
    def is_success(self) -> bool:
        # An unfinished run is never a success, whatever its status column says.
        return self.status == "success" and self.completed_at is not None

    @property
    def duration_minutes(self) -> int | None:
        if self.completed_at is None:
            return None
        return round_half_up((self.completed_at - self.started_at).total_seconds() / 60.0)


@dataclass(frozen=True)
class RefreshSnapshot:
    """Everything one request reads: configs plus the raw rows of both log sources."""

    configs: list[RefreshConfig]
    sync_logs: list[dict[str, Any]] = field(default_factory=list)
    audit_logs: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class TableMetrics:
    last_refresh: datetime | None
    next_refresh: datetime | None
    refresh_frequency_hours: float
    rows_count: int | None = None
    avg_refresh_duration_minutes: int | None = None
    success_rate_7d: int | None = None
    last_error: str | None = None
    data_freshness_hours: int | None = None


@dataclass(frozen=True)
class RefreshTimePoint:
    date: datetime
    duration_minutes: int


@dataclass(frozen=True)
class SuccessRatePoint:
    date: datetime
    rate: int


@dataclass(frozen=True)
class TableTrends:
    refresh_times: list[RefreshTimePoint]
    success_rate: list[SuccessRatePoint]


@dataclass(frozen=True)
class TableMetricsResult:
    table_name: str
    table_schema: str
    category_key: str
    category: str
    category_priority: int
    status: str
    health_score: int
    metrics: TableMetrics
    trends: TableTrends

    def to_payload(self) -> dict[str, Any]:
        metrics: dict[str, Any] = {
            "last_refresh": _iso(self.metrics.last_refresh),
            "next_refresh": _iso(self.metrics.next_refresh),
            "refresh_frequency_hours": self.metrics.refresh_frequency_hours,
        }
        optional = {
            "rows_count": self.metrics.rows_count,
            "avg_refresh_duration_minutes": self.metrics.avg_refresh_duration_minutes,
            "success_rate_7d": self.metrics.success_rate_7d,
            "last_error": self.metrics.last_error,
            "data_freshness_hours": self.metrics.data_freshness_hours,
        }
        # Undefined metrics are left out rather than reported as null/0.
        metrics.update({key: value for key, value in optional.items() if value is not None})
        return {
            "table_name": self.table_name,
            "schema": self.table_schema,
            "category": self.category,
            "category_key": self.category_key,
            "status": self.status,
            "health_score": self.health_score,
            "metrics": metrics,
            "trends": {
                "refresh_times": [
                    {"date": _iso(p.date), "duration_minutes": p.duration_minutes}
                    for p in self.trends.refresh_times
                ],
                "success_rate": [{"date": _iso(p.date), "rate": p.rate} for p in self.trends.success_rate],
            },
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
