from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable

from refresh_health.services.health.categories import OTHER_CATEGORY, CategoryDefinition, CategoryRegistry
from refresh_health.services.health.events import reconcile_events
from refresh_health.services.health.metrics import compute_metrics
from refresh_health.services.health.models import (
    TABLE_STATUSES,
    RefreshConfig,
    RefreshSnapshot,
    TableMetricsResult,
    round_half_up,
)
from refresh_health.services.health.status import classify_status, health_score
from refresh_health.services.health.trends import build_trends

logger = logging.getLogger(__name__)

# (table_schema, table_name) -> row count; may raise.
RowCounter = Callable[[str, str], "int | None"]

ROW_COUNT_MIN_PRIORITY = 70


def _mean_score(results: list[TableMetricsResult]) -> int:
    if not results:
        return 0
    return round_half_up(sum(r.health_score for r in results) / len(results))


class RefreshReport:
    """Per-table health for every refresh config, plus summary and category roll-ups."""

    def __init__(
        self,
        registry: CategoryRegistry,
        tz: tzinfo = timezone.utc,
        row_count_min_priority: int = ROW_COUNT_MIN_PRIORITY,
        row_count_workers: int = 4,
    ):
        self.registry = registry
        self.tz = tz
        self.row_count_min_priority = row_count_min_priority
        self.row_count_workers = max(1, row_count_workers)

    def evaluate_table(
        self,
        config: RefreshConfig,
        category: CategoryDefinition,
        snapshot: RefreshSnapshot,
        now: datetime,
    ) -> TableMetricsResult:
        events = reconcile_events(config.table_name, config.table_schema, snapshot.sync_logs, snapshot.audit_logs)
        metrics = compute_metrics(events, config, now)
        status = classify_status(config, events, metrics)
        return TableMetricsResult(
            table_name=config.table_name,
            table_schema=config.table_schema,
            category_key=category.key,
            category=category.display_name,
            category_priority=category.priority,
            status=status,
            health_score=health_score(status, metrics.success_rate_7d),
            metrics=metrics,
            trends=build_trends(events, now, self.tz),
        )

    def evaluate(
        self,
        snapshot: RefreshSnapshot,
        now: datetime,
        category: str | None = None,
        table: str | None = None,
    ) -> list[TableMetricsResult]:
        results = []
        for config in snapshot.configs:
            resolved = self.registry.resolve(config.table_name)
            if category and resolved.key != category:
                continue
            if table and config.table_name != table:
                continue
            results.append(self.evaluate_table(config, resolved, snapshot, now))
        return results

    def attach_row_counts(
        self,
        results: list[TableMetricsResult],
        row_counter: RowCounter,
    ) -> list[TableMetricsResult]:
        """Best-effort row counts for high-priority categories.

        Runs apart from the status/score pipeline; a failed lookup only drops
        ``rows_count`` for that table.
        """
        targets = [i for i, r in enumerate(results) if r.category_priority >= self.row_count_min_priority]
        if not targets:
            return results

        def _count(index: int) -> tuple[int, int | None]:
            result = results[index]
            try:
                return index, row_counter(result.table_schema, result.table_name)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Row count failed for %s.%s: %s", result.table_schema, result.table_name, exc
                )
                return index, None

        enriched = list(results)
        with ThreadPoolExecutor(max_workers=min(self.row_count_workers, len(targets))) as pool:
            for index, count in pool.map(_count, targets):
                if count is None:
                    continue
                current = enriched[index]
                enriched[index] = replace(current, metrics=replace(current.metrics, rows_count=int(count)))
        return enriched

    @staticmethod
    def sort_results(results: list[TableMetricsResult]) -> list[TableMetricsResult]:
        # sorted() is stable, so equal (priority, score) keep config order.
        return sorted(results, key=lambda r: (-r.category_priority, -r.health_score))

    @staticmethod
    def summarize(results: list[TableMetricsResult]) -> dict[str, Any]:
        by_status = {status: 0 for status in TABLE_STATUSES}
        for result in results:
            by_status[result.status] += 1
        return {
            "total_tables": len(results),
            "by_status": by_status,
            "avg_health_score": _mean_score(results),
        }

    def category_rollup(self, results: list[TableMetricsResult]) -> list[dict[str, Any]]:
        rollup = []
        for category in (*self.registry.categories, OTHER_CATEGORY):
            members = [r for r in results if r.category_key == category.key]
            if not members:
                continue
            rollup.append(
                {
                    "key": category.key,
                    "name": category.display_name,
                    "priority": category.priority,
                    "table_count": len(members),
                    "avg_health_score": _mean_score(members),
                }
            )
        return rollup

    def build(
        self,
        snapshot: RefreshSnapshot,
        now: datetime,
        category: str | None = None,
        table: str | None = None,
        row_counter: RowCounter | None = None,
    ) -> dict[str, Any]:
        results = self.evaluate(snapshot, now, category=category, table=table)
        if row_counter is not None:
            results = self.attach_row_counts(results, row_counter)
        results = self.sort_results(results)

        response: dict[str, Any] = {
            "tables": [r.to_payload() for r in results],
            "summary": self.summarize(results),
        }
        if not table:
            response["categories"] = self.category_rollup(results)
        return response
