from __future__ import annotations

import unittest
from datetime import UTC, datetime, timedelta

from refresh_health.services.health.metrics import (
    average_duration,
    compute_metrics,
    freshness_hours,
    last_error,
    success_rate,
)
from refresh_health.services.health.models import RefreshConfig, RunEvent, round_half_up
from refresh_health.services.health.status import classify_status, health_score

NOW = datetime(2026, 10, 18, 15, 0, tzinfo=UTC)


def _event(
    hours_ago: float,
    status: str = "success",
    minutes: float | None = 30,
    error: str | None = None,
) -> RunEvent:
    started = NOW - timedelta(hours=hours_ago)
    return RunEvent(
        table_name="t",
        table_schema="public",
        started_at=started,
        completed_at=started + timedelta(minutes=minutes) if minutes is not None else None,
        status=status,
        error_message=error,
        source="sync_log",
    )


def _config(**overrides) -> RefreshConfig:
    values = {"table_name": "t", "table_schema": "public", "is_enabled": True, "refresh_frequency_hours": 24}
    values.update(overrides)
    return RefreshConfig(**values)


class RoundingTests(unittest.TestCase):
    def test_halves_round_up(self) -> None:
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(0.5), 1)
        self.assertEqual(round_half_up(86.0), 86)
        self.assertEqual(round_half_up(66.666), 67)


class MetricsCalculatorTests(unittest.TestCase):
    def test_success_rate_is_undefined_without_events(self) -> None:
        self.assertIsNone(success_rate([]))

    def test_success_rate_counts_all_events_in_denominator(self) -> None:
        events = [_event(1), _event(2), _event(3, status="failed", minutes=1), _event(4, status="running", minutes=None)]
        self.assertEqual(success_rate(events), 50)

    def test_success_without_completion_is_not_a_success(self) -> None:
        events = [_event(1), _event(2, status="success", minutes=None)]
        self.assertEqual(success_rate(events), 50)

    def test_average_duration_ignores_failed_and_non_positive_runs(self) -> None:
        events = [
            _event(1, minutes=20),
            _event(2, minutes=41),
            _event(3, status="failed", minutes=500),
            _event(4, minutes=-5),
            _event(5, minutes=0.2),
        ]
        # 20 and 41 qualify; 0.2 rounds to 0 and is dropped.
        self.assertEqual(average_duration(events), 31)

    def test_average_duration_undefined_without_qualifying_runs(self) -> None:
        self.assertIsNone(average_duration([_event(1, status="failed")]))

    def test_last_error_is_most_recent_failure(self) -> None:
        events = [
            _event(1),
            _event(2, status="failed", error="Timeout"),
            _event(3, status="failed", error="Older"),
        ]
        self.assertEqual(last_error(events), "Timeout")

    def test_last_error_absent_when_failure_has_no_message(self) -> None:
        self.assertIsNone(last_error([_event(1, status="failed", error=None), _event(2, status="failed", error="x")]))
        self.assertIsNone(last_error([_event(1)]))

    def test_freshness_hours_rounds_elapsed_time(self) -> None:
        self.assertEqual(freshness_hours(_config(last_refresh_at=NOW - timedelta(hours=5, minutes=30)), NOW), 6)
        self.assertIsNone(freshness_hours(_config(), NOW))

    def test_compute_metrics_matches_reference_table(self) -> None:
        events = [_event(24 * (i + 1), status="failed" if i == 2 else "success", error="Timeout error" if i == 2 else None) for i in range(5)]
        config = _config(last_refresh_at=NOW - timedelta(hours=6))

        metrics = compute_metrics(events, config, NOW)

        self.assertEqual(metrics.success_rate_7d, 80)
        self.assertEqual(metrics.avg_refresh_duration_minutes, 30)
        self.assertEqual(metrics.last_error, "Timeout error")
        self.assertEqual(metrics.data_freshness_hours, 6)
        self.assertIsNone(metrics.rows_count)


class StatusAndScoreTests(unittest.TestCase):
    def _classify(self, config: RefreshConfig, events: list[RunEvent]) -> tuple[str, int]:
        metrics = compute_metrics(events, config, NOW)
        status = classify_status(config, events, metrics)
        return status, health_score(status, metrics.success_rate_7d)

    def test_disabled_wins_over_everything(self) -> None:
        events = [_event(1, status="failed", error="Timeout")]
        config = _config(is_enabled=False, last_refresh_at=NOW - timedelta(days=30))
        self.assertEqual(self._classify(config, events), ("disabled", 0))

    def test_stale_when_overdue_by_half_a_period(self) -> None:
        config = _config(last_refresh_at=NOW - timedelta(hours=48))
        self.assertEqual(self._classify(config, []), ("stale", 50))

    def test_not_stale_at_exact_threshold(self) -> None:
        config = _config(last_refresh_at=NOW - timedelta(hours=36))
        self.assertEqual(self._classify(config, []), ("active", 100))

    def test_active_score_scales_with_success_rate(self) -> None:
        events = [_event(1), _event(2), _event(3, status="failed", error="x"), _event(4), _event(5)]
        self.assertEqual(self._classify(_config(), events), ("active", 86))

    def test_error_when_latest_run_failed(self) -> None:
        events = [_event(1, status="failed", error="Timeout"), _event(2)]
        self.assertEqual(self._classify(_config(), events), ("error", 20))

    def test_error_wins_over_stale(self) -> None:
        events = [_event(1, status="failed", error="Timeout")]
        config = _config(last_refresh_at=NOW - timedelta(days=10))
        self.assertEqual(self._classify(config, events), ("error", 20))

    def test_failed_latest_without_message_is_not_error(self) -> None:
        events = [_event(1, status="failed", error=None), _event(2)]
        status, score = self._classify(_config(), events)
        self.assertEqual(status, "active")
        self.assertEqual(score, 65)

    def test_older_failure_does_not_make_error(self) -> None:
        events = [_event(1), _event(2, status="failed", error="Timeout")]
        self.assertEqual(self._classify(_config(), events)[0], "active")

    def test_score_bounds(self) -> None:
        for status in ("active", "stale", "error", "disabled"):
            for rate in (None, 0, 1, 50, 99, 100):
                score = health_score(status, rate)
                self.assertGreaterEqual(score, 0)
                self.assertLessEqual(score, 100)
        self.assertEqual(health_score("active", 0), 30)
        self.assertEqual(health_score("active", 100), 100)


if __name__ == "__main__":
    unittest.main()
