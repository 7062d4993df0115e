from __future__ import annotations

from refresh_health.services.health.models import RefreshConfig, RunEvent, TableMetrics, round_half_up

STALE_FACTOR = 1.5

SCORE_DISABLED = 0
SCORE_ERROR = 20
SCORE_STALE = 50
SCORE_NO_HISTORY = 100


def classify_status(config: RefreshConfig, events: list[RunEvent], metrics: TableMetrics) -> str:
    """First match wins: disabled, error, stale, active."""
    if not config.is_enabled:
        return "disabled"
    latest = events[0] if events else None
    if latest is not None and latest.status == "failed" and metrics.last_error:
        return "error"
    freshness = metrics.data_freshness_hours
    if freshness is not None and freshness > config.refresh_frequency_hours * STALE_FACTOR:
        return "stale"
    return "active"


def health_score(status: str, success_rate_7d: int | None) -> int:
    if status == "disabled":
        return SCORE_DISABLED
    if status == "error":
        return SCORE_ERROR
    if status == "stale":
        return SCORE_STALE
    if success_rate_7d is None:
        return SCORE_NO_HISTORY
    return max(0, min(100, round_half_up(success_rate_7d * 0.7 + 30)))
