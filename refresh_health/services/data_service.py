from __future__ import annotations

import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from typing import Any, Callable
from zoneinfo import ZoneInfo

from refresh_health.services.health.categories import CategoryRegistry, default_registry
from refresh_health.services.health.models import RefreshConfig, RefreshSnapshot
from refresh_health.services.health.overview import build_overview
from refresh_health.services.health.refresh_metrics import build_refresh_metrics, clamp_days
from refresh_health.services.health.report import RefreshReport
from refresh_health.services.health.system_health import build_system_health, unreachable_health
from refresh_health.services.refresh_store import RefreshStore
from refresh_health.services.shared.cache_store import QueryCache

logger = logging.getLogger(__name__)


class RefreshDataUnavailable(RuntimeError):
    """The refresh configuration could not be loaded; no partial report is possible."""


class DatabaseUnreachable(RuntimeError):
    """The database did not answer a ping; carries the critical health body to return."""

    def __init__(self, message: str, payload: dict[str, Any]):
        super().__init__(message)
        self.payload = payload


class DataService:
    """Coordinator between the refresh store and the health engine."""

    def __init__(
        self,
        store: RefreshStore,
        registry: CategoryRegistry | None = None,
        cache: QueryCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.registry = registry or default_registry()
        self.cache = cache
        self._clock = clock or (lambda: datetime.now(UTC))
        self.lookback = timedelta(days=int(os.getenv("REFRESH_LOOKBACK_DAYS", "7")))
        self.fetch_timeout_seconds = float(os.getenv("REFRESH_FETCH_TIMEOUT_SECONDS", "20"))
        self.snapshot_ttl_seconds = float(os.getenv("REFRESH_SNAPSHOT_TTL_SECONDS", "15"))
        self.report = RefreshReport(
            self.registry,
            tz=ZoneInfo(os.getenv("REFRESH_REPORT_TIMEZONE", "UTC")),
            row_count_workers=int(os.getenv("REFRESH_ROW_COUNT_WORKERS", "4")),
        )
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="refresh-fetch")
        self._log_slow_reports = os.getenv("API_LOG_SLOW_REPORTS", "0") == "1"
        self._slow_report_threshold_ms = float(os.getenv("API_SLOW_REPORT_THRESHOLD_MS", "500"))

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self.cache is not None:
            self.cache.clear()
        self.store.sql.close()

    def warmup(self) -> None:
        """Prime the snapshot cache so the first dashboard load skips the log scans."""
        if os.getenv("API_PREWARM_ENABLED", "1") != "1" or self.cache is None:
            return
        started = time.perf_counter()
        snapshot = self.load_snapshot(self._clock())
        logger.info(
            "Warmup complete: %s configs, %s sync rows, %s audit rows in %.2fs",
            len(snapshot.configs),
            len(snapshot.sync_logs),
            len(snapshot.audit_logs),
            time.perf_counter() - started,
        )

    def _cached(self, key: str, loader: Callable[[], Any]) -> Any:
        if self.cache is None:
            return loader()
        return self.cache.cached(key, loader, ttl_seconds=self.snapshot_ttl_seconds)

    def _submit(self, key: str, loader: Callable[[], Any]) -> Future:
        return self._executor.submit(self._cached, key, loader)

    def _wait_for_logs(self, name: str, future: Future) -> list[dict[str, Any]]:
        try:
            return future.result(timeout=self.fetch_timeout_seconds)
        except Exception as exc:  # noqa: BLE001
            # A single log source outage must not take the report down.
            logger.warning("Error fetching %s, continuing without it: %s", name, str(exc) or type(exc).__name__)
            return []

    def _wait_for_configs(self, future: Future) -> list[RefreshConfig]:
        try:
            return future.result(timeout=self.fetch_timeout_seconds)
        except Exception as exc:
            raise RefreshDataUnavailable(str(exc) or type(exc).__name__) from exc

    def load_snapshot(self, now: datetime) -> RefreshSnapshot:
        since = now - self.lookback
        configs = self._submit("refresh::configs", self.store.fetch_configs)
        sync_logs = self._submit("refresh::sync_logs", lambda: self.store.fetch_sync_logs(since))
        audit_logs = self._submit("refresh::audit_logs", lambda: self.store.fetch_audit_logs(since))
        return RefreshSnapshot(
            configs=self._wait_for_configs(configs),
            sync_logs=self._wait_for_logs("sync logs", sync_logs),
            audit_logs=self._wait_for_logs("audit logs", audit_logs),
        )

    def get_refresh_tables(self, category: str | None = None, table: str | None = None) -> dict[str, Any]:
        started = time.perf_counter()
        now = self._clock()
        snapshot = self.load_snapshot(now)
        response = self.report.build(
            snapshot,
            now,
            category=category,
            table=table,
            row_counter=self.store.count_rows,
        )
        if self._log_slow_reports:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            if elapsed_ms >= self._slow_report_threshold_ms:
                logger.warning(
                    "Slow refresh report %.2fms tables=%s category=%s table=%s",
                    elapsed_ms,
                    len(response["tables"]),
                    category,
                    table,
                )
        return response

    def get_refresh_status(self) -> dict[str, Any]:
        now = self._clock()
        since = now - timedelta(hours=24)
        configs = self._submit("refresh::configs", self.store.fetch_configs)
        recent = self._submit("refresh::audit_logs_24h", lambda: self.store.fetch_recent_audit_logs(since))
        return build_overview(
            self._wait_for_configs(configs),
            self._wait_for_logs("recent audit logs", recent),
            now,
        )

    def _outcome(self, name: str, future: Future) -> tuple[Any, str | None]:
        try:
            return future.result(timeout=self.fetch_timeout_seconds), None
        except Exception as exc:  # noqa: BLE001
            reason = str(exc) or type(exc).__name__
            logger.warning("Error fetching %s for system health: %s", name, reason)
            return None, reason

    def get_system_health(self) -> dict[str, Any]:
        now = self._clock()
        try:
            self.store.ping()
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning("Database ping failed: %s", reason)
            raise DatabaseUnreachable(reason, unreachable_health(reason, now)) from exc

        since = now - timedelta(hours=24)
        configs = self._submit("refresh::configs", self.store.fetch_configs)
        sync_logs = self._submit("refresh::sync_logs_24h", lambda: self.store.fetch_sync_logs(since))
        latest = self._executor.submit(self.store.fetch_latest_data_date)
        pipeline = self._executor.submit(self.store.fetch_pipeline_health)

        configs_value, configs_error = self._outcome("refresh configs", configs)
        sync_value, sync_error = self._outcome("sync logs", sync_logs)
        latest_value, latest_error = self._outcome("latest data date", latest)
        # The pipeline view is optional; without it the check is skipped.
        pipeline_value, _ = self._outcome("pipeline health", pipeline)

        return build_system_health(
            configs_value,
            sync_value,
            latest_value,
            pipeline_value,
            now,
            configs_error=configs_error,
            sync_error=sync_error,
            data_error=latest_error,
        )

    def get_refresh_metrics(self, days: Any = None, table_name: str | None = None) -> dict[str, Any]:
        now = self._clock()
        period = clamp_days(days)
        rows = self.store.fetch_completed_audit_logs(now - timedelta(days=period), table_name=table_name or None)
        return build_refresh_metrics(rows, now, days=period, tz=self.report.tz)
