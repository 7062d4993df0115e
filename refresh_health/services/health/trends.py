from __future__ import annotations

from datetime import datetime, timedelta, tzinfo

from refresh_health.services.health.models import (
    RefreshTimePoint,
    RunEvent,
    SuccessRatePoint,
    TableTrends,
    round_half_up,
)

MAX_REFRESH_TIMES = 10
TREND_DAYS = 7


def refresh_times(events: list[RunEvent], limit: int = MAX_REFRESH_TIMES) -> list[RefreshTimePoint]:
    points = []
    for event in events:
        if not event.is_success:
            continue
        points.append(RefreshTimePoint(date=event.started_at, duration_minutes=event.duration_minutes or 0))
        if len(points) >= limit:
            break
    return points


def _day_start(now: datetime, days_back: int, tz: tzinfo) -> datetime:
    local_day = (now.astimezone(tz) - timedelta(days=days_back)).date()
    return datetime(local_day.year, local_day.month, local_day.day, tzinfo=tz)


def daily_success_rates(events: list[RunEvent], now: datetime, tz: tzinfo, days: int = TREND_DAYS) -> list[SuccessRatePoint]:
    """Per-day success rate for today and the previous ``days - 1`` days, newest day first.

    Days are midnight-to-midnight in ``tz``; a day without runs is skipped.
    """
    points = []
    for i in range(days):
        start = _day_start(now, i, tz)
        # Next local midnight, which is not always start + 24h across DST changes.
        next_day = start.date() + timedelta(days=1)
        end = datetime(next_day.year, next_day.month, next_day.day, tzinfo=tz)
        day_events = [e for e in events if start <= e.started_at < end]
        if not day_events:
            continue
        successes = sum(1 for e in day_events if e.is_success)
        points.append(SuccessRatePoint(date=start, rate=round_half_up(successes / len(day_events) * 100)))
    return points


def build_trends(events: list[RunEvent], now: datetime, tz: tzinfo) -> TableTrends:
    return TableTrends(
        refresh_times=refresh_times(events),
        success_rate=daily_success_rates(events, now, tz),
    )
