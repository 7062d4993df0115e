#!/usr/bin/env python3
"""
Benchmark the refresh health endpoints.

Records cold latency (first call per scenario), the warm latency distribution
(repeated calls, served mostly from the snapshot cache), error rate and
payload size, so store/query changes can be compared over time.

Example:
  python scripts/benchmark_refresh_tables.py --scenarios all,categories --tables sync_log,brands --repeats 5
"""

from __future__ import annotations

import argparse
import json
import statistics
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from refresh_health.services.health.categories import default_registry


@dataclass(frozen=True)
class EndpointScenario:
    name: str
    path: str
    params: dict[str, str] = field(default_factory=dict)


SCENARIO_GROUPS = ("all", "categories", "status", "health", "metrics")


def default_scenarios(groups: list[str], tables: list[str]) -> list[EndpointScenario]:
    scenarios: list[EndpointScenario] = []
    if "all" in groups:
        scenarios.append(EndpointScenario("tables", "/refresh/tables"))
    if "categories" in groups:
        for key in default_registry().keys():
            scenarios.append(EndpointScenario(f"category:{key}", "/refresh/tables", {"category": key}))
    if "status" in groups:
        scenarios.append(EndpointScenario("status", "/refresh/status"))
    if "health" in groups:
        scenarios.append(EndpointScenario("health", "/refresh/health"))
    if "metrics" in groups:
        scenarios.append(EndpointScenario("metrics:7d", "/refresh/metrics", {"days": "7"}))
        scenarios.append(EndpointScenario("metrics:30d", "/refresh/metrics", {"days": "30"}))
    for table in tables:
        scenarios.append(EndpointScenario(f"table:{table}", "/refresh/tables", {"table": table}))
    return scenarios


def parse_groups(value: str) -> list[str]:
    raw_items = [item.strip().lower() for item in value.split(",") if item.strip()]
    if not raw_items:
        return ["all"]
    if "everything" in raw_items:
        return list(SCENARIO_GROUPS)
    unknown = [item for item in raw_items if item not in SCENARIO_GROUPS]
    if unknown:
        raise ValueError(f"Unsupported scenario group(s): {', '.join(unknown)}")
    return raw_items


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark refresh health API endpoints")
    parser.add_argument("--base-url", default="http://127.0.0.1:8001", help="API base URL")
    parser.add_argument(
        "--scenarios",
        default="all",
        help="Comma-separated groups: all, categories, status, health, metrics, or 'everything'",
    )
    parser.add_argument("--tables", default="", help="Optional comma-separated table names to benchmark individually")
    parser.add_argument("--repeats", type=int, default=5, help="Warm repeats per scenario")
    parser.add_argument("--timeout-seconds", type=float, default=30.0, help="HTTP timeout")
    parser.add_argument("--parallel", type=int, default=1, help="Concurrent scenario workers")
    parser.add_argument("--output-json", default="", help="Optional output path for JSON report")
    return parser.parse_args(argv)


def percentile(sorted_values: list[float], p: float) -> float:
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return sorted_values[0]
    idx = (len(sorted_values) - 1) * p
    lo = int(idx)
    hi = min(lo + 1, len(sorted_values) - 1)
    frac = idx - lo
    return sorted_values[lo] * (1 - frac) + sorted_values[hi] * frac


def fetch_json(url: str, timeout_seconds: float) -> tuple[dict[str, Any] | None, int, str]:
    req = Request(url, method="GET")
    try:
        with urlopen(req, timeout=timeout_seconds) as resp:
            text = resp.read().decode("utf-8")
            return json.loads(text), int(resp.status), text
    except HTTPError as exc:
        return None, int(exc.code), exc.read().decode("utf-8", errors="replace")
    except (TimeoutError, URLError) as exc:
        return None, 0, str(exc)


def is_ok(payload: dict[str, Any] | None, status_code: int) -> bool:
    if status_code != 200 or payload is None:
        return False
    return "error" not in payload


def benchmark_once(url: str, timeout_seconds: float) -> dict[str, Any]:
    started = time.perf_counter()
    payload, status_code, raw = fetch_json(url, timeout_seconds)
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    ok = is_ok(payload, status_code)
    return {
        "ok": ok,
        "status_code": status_code,
        "elapsed_ms": elapsed_ms,
        "payload_bytes": len(raw.encode("utf-8", errors="ignore")),
        "table_count": len(payload.get("tables", [])) if payload else 0,
        "error": "" if ok else raw[:500],
    }


def build_url(base_url: str, scenario: EndpointScenario) -> str:
    url = f"{base_url.rstrip('/')}{scenario.path}"
    if scenario.params:
        url = f"{url}?{urlencode(scenario.params)}"
    return url


def run_scenario(base_url: str, scenario: EndpointScenario, repeats: int, timeout_seconds: float) -> dict[str, Any]:
    url = build_url(base_url, scenario)
    cold = benchmark_once(url, timeout_seconds)
    warm_runs = [benchmark_once(url, timeout_seconds) for _ in range(repeats)]
    warm_latencies = sorted(run["elapsed_ms"] for run in warm_runs)
    success_count = sum(1 for run in warm_runs if run["ok"])

    return {
        "scenario": scenario.name,
        "path": scenario.path,
        "params": scenario.params,
        "cold_ms": round(cold["elapsed_ms"], 2),
        "cold_ok": cold["ok"],
        "cold_status_code": cold["status_code"],
        "table_count": cold["table_count"],
        "warm_repeats": repeats,
        "warm_success_count": success_count,
        "warm_error_count": repeats - success_count,
        "warm_p50_ms": round(statistics.median(warm_latencies), 2) if warm_latencies else 0.0,
        "warm_p95_ms": round(percentile(warm_latencies, 0.95), 2),
        "warm_max_ms": round(max(warm_latencies), 2) if warm_latencies else 0.0,
        "payload_bytes_p50": int(statistics.median(run["payload_bytes"] for run in warm_runs)) if warm_runs else 0,
        "error_samples": [run["error"] for run in [cold, *warm_runs] if not run["ok"]][:2],
    }


def print_report(results: list[dict[str, Any]]) -> None:
    print("\nBenchmark results")
    print("=" * 96)
    header = (
        f"{'Scenario':32} {'Tables':>6} {'Cold(ms)':>9} {'P50(ms)':>9} "
        f"{'P95(ms)':>9} {'Max(ms)':>9} {'Err':>5} {'Payload(B)':>10}"
    )
    print(header)
    print("-" * len(header))
    for row in results:
        print(
            f"{row['scenario'][:32]:32} {row['table_count']:6d} {row['cold_ms']:9.2f} "
            f"{row['warm_p50_ms']:9.2f} {row['warm_p95_ms']:9.2f} {row['warm_max_ms']:9.2f} "
            f"{row['warm_error_count']:5d} {row['payload_bytes_p50']:10d}"
        )
    print("=" * 96)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    tables = [item.strip() for item in args.tables.split(",") if item.strip()]
    scenarios = default_scenarios(parse_groups(args.scenarios), tables)

    start = datetime.now(timezone.utc)
    results: list[dict[str, Any]] = []
    if args.parallel <= 1:
        for scenario in scenarios:
            results.append(run_scenario(args.base_url, scenario, args.repeats, args.timeout_seconds))
    else:
        with ThreadPoolExecutor(max_workers=args.parallel) as pool:
            futures = [
                pool.submit(run_scenario, args.base_url, scenario, args.repeats, args.timeout_seconds)
                for scenario in scenarios
            ]
            for future in as_completed(futures):
                results.append(future.result())

    results.sort(key=lambda item: item["scenario"])
    print_report(results)

    if args.output_json:
        report = {
            "run_started_utc": start.isoformat(),
            "run_finished_utc": datetime.now(timezone.utc).isoformat(),
            "config": {
                "base_url": args.base_url,
                "scenarios": [s.name for s in scenarios],
                "repeats": args.repeats,
                "timeout_seconds": args.timeout_seconds,
                "parallel": args.parallel,
            },
            "results": results,
        }
        output_path = Path(args.output_json)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        print(f"\nJSON report written: {output_path}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
