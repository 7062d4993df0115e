from __future__ import annotations

import unittest
from datetime import UTC, date, datetime, timedelta

from refresh_health.services.health.models import RefreshConfig
from refresh_health.services.health.system_health import (
    CORE_TABLE_NAMES,
    build_system_health,
    overall_status,
    pipeline_check,
    unreachable_health,
)

NOW = datetime(2026, 10, 18, 15, 0, tzinfo=UTC)


def _config(name: str, **overrides) -> RefreshConfig:
    values = {
        "table_name": name,
        "table_schema": "public",
        "is_enabled": True,
        "refresh_frequency_hours": 24,
        "last_refresh_at": NOW - timedelta(hours=2),
    }
    values.update(overrides)
    return RefreshConfig(**values)


def _syncs(successful: int, failed: int = 0) -> list[dict]:
    return [{"table_name": "sync_log", "status": "success"}] * successful + [
        {"table_name": "sync_log", "status": "failed"}
    ] * failed


def _checks(payload: dict) -> dict[str, dict]:
    return {check["name"]: check for check in payload["checks"]}


class SystemHealthTests(unittest.TestCase):
    def test_all_checks_pass(self) -> None:
        payload = build_system_health(
            [_config(name) for name in CORE_TABLE_NAMES],
            _syncs(10),
            date(2026, 10, 17),
            {"sync_success_rate": 95.0, "tables_synced_24h": 6},
            NOW,
        )

        self.assertEqual(payload["status"], "healthy")
        self.assertEqual(payload["health_score"], 100)
        self.assertEqual(payload["recommendations"], [])
        self.assertEqual(
            [c["name"] for c in payload["checks"]],
            [
                "database_connectivity",
                "core_tables_configured",
                "sync_activity",
                "data_freshness",
                "stale_tables",
                "pipeline_metrics",
            ],
        )
        self.assertEqual(_checks(payload)["data_freshness"]["details"]["days_old"], 1)
        self.assertEqual(payload["thresholds"]["failure_rate_max"], 10)
        self.assertEqual(payload["timestamp"], NOW.isoformat())

    def test_high_failure_rate_and_old_data_degrade(self) -> None:
        payload = build_system_health(
            [_config(name) for name in CORE_TABLE_NAMES],
            _syncs(8, failed=2),
            date(2026, 10, 13),
            None,
            NOW,
        )

        checks = _checks(payload)
        self.assertEqual(checks["sync_activity"]["status"], "fail")
        self.assertEqual(checks["sync_activity"]["message"], "High sync failure rate: 20.0%")
        self.assertEqual(checks["sync_activity"]["details"]["failure_rate"], "20.0%")
        self.assertEqual(checks["data_freshness"]["status"], "warn")
        self.assertEqual(checks["data_freshness"]["message"], "Data is 5 days old")
        self.assertNotIn("pipeline_metrics", checks)
        # (100 + 100 + 0 + 70 + 100) / 5
        self.assertEqual(payload["health_score"], 74)
        self.assertEqual(payload["status"], "degraded")
        self.assertEqual(
            payload["recommendations"],
            [
                {
                    "type": "investigate_failures",
                    "priority": "critical",
                    "message": "Investigate and fix failing health checks",
                    "checks": ["sync_activity"],
                }
            ],
        )

    def test_missing_inputs_become_failed_checks(self) -> None:
        payload = build_system_health(None, [], None, None, NOW, configs_error="permission denied")

        checks = _checks(payload)
        self.assertEqual(checks["refresh_config_access"]["status"], "fail")
        self.assertEqual(checks["refresh_config_access"]["details"], {"error": "permission denied"})
        self.assertEqual(checks["core_tables_configured"]["status"], "warn")
        self.assertEqual(checks["sync_activity"]["message"], "No sync activity in the last 24 hours")
        self.assertEqual(checks["data_freshness"]["message"], "No data found in core tables")
        self.assertEqual(checks["stale_tables"]["message"], "0 stale tables (0.0%)")
        self.assertEqual(payload["status"], "critical")

    def test_sync_fetch_error_is_only_a_warning(self) -> None:
        payload = build_system_health([], None, None, None, NOW, sync_error="timeout")
        check = _checks(payload)["sync_activity"]
        self.assertEqual(check["status"], "warn")
        self.assertEqual(check["details"], {"error": "timeout"})

    def test_stale_tables_listed_and_recommended(self) -> None:
        configs = [
            _config("brands", last_refresh_at=None),
            _config("sync_log", last_refresh_at=NOW - timedelta(hours=40)),
            _config("asin_performance_data"),
            _config("search_query_performance"),
            _config("data_quality_checks"),
            _config("weekly_summary", is_enabled=False, last_refresh_at=None),
        ]

        payload = build_system_health(configs, _syncs(5), date(2026, 10, 18), None, NOW)

        stale = _checks(payload)["stale_tables"]
        self.assertEqual(stale["status"], "warn")
        self.assertEqual(stale["message"], "2 stale tables (40.0%)")
        self.assertEqual(stale["details"]["stale_tables"], ["brands", "sync_log"])
        self.assertEqual(payload["recommendations"][0]["type"], "refresh_stale_tables")
        self.assertEqual(payload["recommendations"][0]["tables"], ["brands", "sync_log"])

    def test_disabled_core_tables_do_not_count(self) -> None:
        configs = [_config(name, is_enabled=False) for name in CORE_TABLE_NAMES]
        check = _checks(build_system_health(configs, _syncs(1), date(2026, 10, 18), None, NOW))["core_tables_configured"]
        self.assertEqual(check["status"], "warn")
        self.assertEqual(check["message"], "0 of 6 core tables configured")
        self.assertEqual(check["details"]["missing"], list(CORE_TABLE_NAMES))

    def test_week_old_data_fails_freshness(self) -> None:
        payload = build_system_health([], _syncs(1), datetime(2026, 10, 9, 12, 0, tzinfo=UTC), None, NOW)
        self.assertEqual(_checks(payload)["data_freshness"]["status"], "fail")


class PipelineCheckTests(unittest.TestCase):
    def test_thresholds(self) -> None:
        self.assertEqual(pipeline_check({"sync_success_rate": 90})["status"], "pass")
        self.assertEqual(pipeline_check({"sync_success_rate": 75})["status"], "warn")
        self.assertEqual(pipeline_check({"sync_success_rate": 74.9})["status"], "fail")

    def test_rate_derived_from_sync_counts(self) -> None:
        check = pipeline_check({"successful_syncs_24h": 8, "failed_syncs_24h": 2, "total_records_processed_24h": 900})
        self.assertEqual(check["status"], "warn")
        self.assertEqual(check["message"], "Pipeline success rate: 80.0%")
        self.assertEqual(check["details"]["records_processed_24h"], 900)

    def test_unusable_view_row_is_skipped(self) -> None:
        self.assertIsNone(pipeline_check(None))
        self.assertIsNone(pipeline_check({"component": "BigQuery Sync Pipeline"}))
        self.assertIsNone(pipeline_check({"successful_syncs_24h": 0, "failed_syncs_24h": 0}))


class OverallStatusTests(unittest.TestCase):
    def test_bands(self) -> None:
        self.assertEqual(overall_status(90), "healthy")
        self.assertEqual(overall_status(89), "degraded")
        self.assertEqual(overall_status(60), "degraded")
        self.assertEqual(overall_status(59), "critical")

    def test_unreachable_database_body(self) -> None:
        payload = unreachable_health("could not connect", NOW)
        self.assertEqual(payload["status"], "critical")
        self.assertEqual(payload["health_score"], 0)
        self.assertEqual(
            payload["checks"],
            [
                {
                    "name": "database_connectivity",
                    "status": "fail",
                    "message": "Database connection failed",
                    "details": {"error": "could not connect"},
                }
            ],
        )


if __name__ == "__main__":
    unittest.main()
