from __future__ import annotations

import math
from datetime import date, datetime, time, timezone
from typing import Any

from refresh_health.services.health.models import RefreshConfig, round_half_up
from refresh_health.services.health.status import STALE_FACTOR

HEALTH_THRESHOLDS = {
    "critical_tables_max": 0,
    "stale_percentage_max": 20,
    "failure_rate_max": 10,
    "sync_lag_hours_max": 48,
}

CHECK_SCORES = {"pass": 100, "warn": 70, "fail": 0}

CORE_TABLE_NAMES = (
    "sync_log",
    "search_query_performance",
    "asin_performance_data",
    "data_quality_checks",
    "brands",
    "asin_brand_mapping",
)
MIN_CORE_TABLES = 4

FRESHNESS_WARN_DAYS = 3
FRESHNESS_FAIL_DAYS = 7


def _check(name: str, status: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    check: dict[str, Any] = {"name": name, "status": status, "message": message}
    if details is not None:
        check["details"] = details
    return check


def database_check(error: str | None) -> dict[str, Any]:
    if error is not None:
        return _check("database_connectivity", "fail", "Database connection failed", {"error": error})
    return _check("database_connectivity", "pass", "Database connection successful")


def core_tables_check(configs: list[RefreshConfig]) -> dict[str, Any]:
    configured = [c.table_name for c in configs if c.table_name in CORE_TABLE_NAMES]
    return _check(
        "core_tables_configured",
        "pass" if len(configured) >= MIN_CORE_TABLES else "warn",
        f"{len(configured)} of {len(CORE_TABLE_NAMES)} core tables configured",
        {
            "configured": configured,
            "missing": [name for name in CORE_TABLE_NAMES if name not in configured],
        },
    )


def sync_activity_check(sync_rows: list[dict[str, Any]] | None, error: str | None) -> dict[str, Any]:
    if error is not None:
        return _check("sync_activity", "warn", "Could not check sync activity", {"error": error})
    if not sync_rows:
        return _check("sync_activity", "fail", "No sync activity in the last 24 hours")

    successful = sum(1 for row in sync_rows if row.get("status") == "success")
    failed = len(sync_rows) - successful
    failure_rate = failed / len(sync_rows) * 100
    details = {
        "total_syncs": len(sync_rows),
        "successful": successful,
        "failed": failed,
        "failure_rate": f"{failure_rate:.1f}%",
    }
    if failure_rate > HEALTH_THRESHOLDS["failure_rate_max"]:
        return _check("sync_activity", "fail", f"High sync failure rate: {failure_rate:.1f}%", details)
    return _check("sync_activity", "pass", "Sync activity is normal", details)


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def data_freshness_check(latest_data_date: date | datetime | None, now: datetime, error: str | None = None) -> dict[str, Any]:
    if error is not None:
        return _check("data_freshness", "fail", "Could not read latest data date", {"error": error})
    if latest_data_date is None:
        return _check("data_freshness", "fail", "No data found in core tables")

    days_old = math.floor((now - _as_datetime(latest_data_date)).total_seconds() / 86400)
    details = {"latest_data_date": latest_data_date.isoformat(), "days_old": days_old}
    if days_old > FRESHNESS_FAIL_DAYS:
        return _check("data_freshness", "fail", f"Data is {days_old} days old", details)
    if days_old > FRESHNESS_WARN_DAYS:
        return _check("data_freshness", "warn", f"Data is {days_old} days old", details)
    return _check("data_freshness", "pass", "Data is up to date", details)


def stale_configs(configs: list[RefreshConfig], now: datetime) -> list[RefreshConfig]:
    """Configs past 1.5x their period. A table never refreshed counts as stale here."""
    stale = []
    for config in configs:
        if config.last_refresh_at is None:
            stale.append(config)
            continue
        hours = (now - config.last_refresh_at).total_seconds() / 3600.0
        if hours > config.refresh_frequency_hours * STALE_FACTOR:
            stale.append(config)
    return stale


def stale_tables_check(configs: list[RefreshConfig], stale: list[RefreshConfig]) -> dict[str, Any]:
    percentage = len(stale) / len(configs) * 100 if configs else 0.0
    return _check(
        "stale_tables",
        "warn" if percentage > HEALTH_THRESHOLDS["stale_percentage_max"] else "pass",
        f"{len(stale)} stale tables ({percentage:.1f}%)",
        {
            "stale_tables": [c.table_name for c in stale],
            "threshold": f"{HEALTH_THRESHOLDS['stale_percentage_max']}%",
        },
    )


def _pipeline_success_rate(row: dict[str, Any]) -> float | None:
    rate = row.get("sync_success_rate")
    if rate is not None:
        return float(rate)
    successful = row.get("successful_syncs_24h")
    failed = row.get("failed_syncs_24h")
    if successful is None or failed is None or successful + failed == 0:
        return None
    return successful / (successful + failed) * 100


def pipeline_check(row: dict[str, Any] | None) -> dict[str, Any] | None:
    """Check built from the ``pipeline_health`` view; ``None`` when the view gave nothing usable."""
    if not row:
        return None
    rate = _pipeline_success_rate(row)
    if rate is None:
        return None
    if rate >= 90:
        status = "pass"
    elif rate >= 75:
        status = "warn"
    else:
        status = "fail"
    return _check(
        "pipeline_metrics",
        status,
        f"Pipeline success rate: {rate:.1f}%",
        {
            "tables_synced_24h": row.get("tables_synced_24h"),
            "records_processed_24h": row.get("total_records_24h", row.get("total_records_processed_24h")),
            "avg_sync_duration_minutes": row.get("avg_sync_duration_minutes"),
        },
    )


def overall_status(score: int) -> str:
    if score >= 90:
        return "healthy"
    if score >= 60:
        return "degraded"
    return "critical"


def unreachable_health(error: str, now: datetime) -> dict[str, Any]:
    """Short-circuit body for when the database cannot be reached at all."""
    return {
        "status": "critical",
        "health_score": 0,
        "checks": [database_check(error)],
        "timestamp": now.isoformat(),
    }


def build_system_health(
    configs: list[RefreshConfig] | None,
    sync_rows: list[dict[str, Any]] | None,
    latest_data_date: date | datetime | None,
    pipeline_row: dict[str, Any] | None,
    now: datetime,
    configs_error: str | None = None,
    sync_error: str | None = None,
    data_error: str | None = None,
) -> dict[str, Any]:
    """Run every system check against already-fetched inputs and score the result.

    ``configs`` is the full config list; only enabled tables are checked. A
    missing input comes with its ``*_error`` and turns into a failed or
    warning check instead of an exception.
    """
    checks = [database_check(None)]
    enabled = [c for c in configs or [] if c.is_enabled]
    if configs_error is not None:
        checks.append(
            _check("refresh_config_access", "fail", "Failed to access refresh configurations", {"error": configs_error})
        )
    checks.append(core_tables_check(enabled))
    checks.append(sync_activity_check(sync_rows, sync_error))
    checks.append(data_freshness_check(latest_data_date, now, data_error))
    stale = stale_configs(enabled, now)
    checks.append(stale_tables_check(enabled, stale))
    pipeline = pipeline_check(pipeline_row)
    if pipeline is not None:
        checks.append(pipeline)

    score = round_half_up(sum(CHECK_SCORES[c["status"]] for c in checks) / len(checks))

    recommendations = []
    if stale:
        recommendations.append(
            {
                "type": "refresh_stale_tables",
                "priority": "high",
                "message": "Trigger refresh for stale tables",
                "tables": [c.table_name for c in stale],
            }
        )
    failed = [c["name"] for c in checks if c["status"] == "fail"]
    if failed:
        recommendations.append(
            {
                "type": "investigate_failures",
                "priority": "critical",
                "message": "Investigate and fix failing health checks",
                "checks": failed,
            }
        )

    return {
        "status": overall_status(score),
        "health_score": score,
        "checks": checks,
        "recommendations": recommendations,
        "timestamp": now.isoformat(),
        "thresholds": dict(HEALTH_THRESHOLDS),
    }
