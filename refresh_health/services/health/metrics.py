from __future__ import annotations

from datetime import datetime

from refresh_health.services.health.models import RefreshConfig, RunEvent, TableMetrics, round_half_up


def success_rate(events: list[RunEvent]) -> int | None:
    if not events:
        return None
    successes = sum(1 for e in events if e.is_success)
    return round_half_up(successes / len(events) * 100)


def success_durations(events: list[RunEvent]) -> list[int]:
    """Whole-minute durations of finished successful runs, newest first.

    Non-positive values (clock skew, backfilled rows) are dropped.
    """
    durations = []
    for event in events:
        if not event.is_success:
            continue
        minutes = event.duration_minutes
        if minutes is not None and minutes > 0:
            durations.append(minutes)
    return durations


def average_duration(events: list[RunEvent]) -> int | None:
    durations = success_durations(events)
    if not durations:
        return None
    return round_half_up(sum(durations) / len(durations))


def last_error(events: list[RunEvent]) -> str | None:
    failed = next((e for e in events if e.status == "failed"), None)
    if failed is None or not failed.error_message:
        return None
    return failed.error_message


def freshness_hours(config: RefreshConfig, now: datetime) -> int | None:
    if config.last_refresh_at is None:
        return None
    return round_half_up((now - config.last_refresh_at).total_seconds() / 3600.0)


def compute_metrics(events: list[RunEvent], config: RefreshConfig, now: datetime) -> TableMetrics:
    """Derive the per-table metric block. ``events`` must already be newest first."""
    return TableMetrics(
        last_refresh=config.last_refresh_at,
        next_refresh=config.next_refresh_at,
        refresh_frequency_hours=config.refresh_frequency_hours,
        avg_refresh_duration_minutes=average_duration(events),
        success_rate_7d=success_rate(events),
        last_error=last_error(events),
        data_freshness_hours=freshness_hours(config, now),
    )
