from __future__ import annotations

import threading
import time
import unittest

from refresh_health.services.shared.cache_store import QueryCache


class _ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class QueryCacheSingleflightTests(unittest.TestCase):
    def test_waiters_use_per_call_ttl_for_inflight_wait(self) -> None:
        cache = QueryCache(ttl_seconds=0.05, max_entries=16)
        calls = 0
        calls_lock = threading.Lock()
        results: list[list[str]] = []

        def loader() -> list[str]:
            nonlocal calls
            with calls_lock:
                calls += 1
            time.sleep(0.15)
            return ["brands"]

        def worker() -> None:
            value = cache.cached("refresh::configs", loader, ttl_seconds=1.0)
            results.append(value)

        t1 = threading.Thread(target=worker)
        t2 = threading.Thread(target=worker)
        t1.start()
        time.sleep(0.01)
        t2.start()
        t1.join()
        t2.join()

        self.assertEqual(calls, 1, "inflight waiter should not trigger duplicate loader")
        self.assertEqual(results, [["brands"], ["brands"]])

    def test_failed_load_is_not_cached(self) -> None:
        cache = QueryCache(ttl_seconds=60, max_entries=16)
        attempts = 0

        def loader() -> list[dict]:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("sync_log unavailable")
            return [{"table_name": "brands"}]

        with self.assertRaises(RuntimeError):
            cache.cached("refresh::sync_logs", loader)
        self.assertEqual(cache.cached("refresh::sync_logs", loader), [{"table_name": "brands"}])
        self.assertEqual(attempts, 2)

    def test_empty_result_is_cached(self) -> None:
        cache = QueryCache(ttl_seconds=60, max_entries=16)
        calls = 0

        def loader() -> list[dict]:
            nonlocal calls
            calls += 1
            return []

        cache.cached("refresh::audit_logs", loader)
        cache.cached("refresh::audit_logs", loader)
        self.assertEqual(calls, 1)


class QueryCacheExpiryTests(unittest.TestCase):
    def test_entries_expire_after_ttl(self) -> None:
        clock = _ManualClock()
        cache = QueryCache(ttl_seconds=15, max_entries=16, clock=clock)
        cache.set("k", "v")

        clock.now += 14.9
        self.assertEqual(cache.get("k"), "v")
        clock.now += 0.2
        self.assertIsNone(cache.get("k"))
        self.assertEqual(len(cache), 0)

    def test_non_positive_ttl_disables_caching(self) -> None:
        cache = QueryCache(ttl_seconds=0, max_entries=16)
        self.assertEqual(cache.set("k", "v"), "v")
        self.assertIsNone(cache.get("k"))

    def test_least_recently_used_entry_is_evicted(self) -> None:
        cache = QueryCache(ttl_seconds=60, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        self.assertEqual(cache.get("a"), 1)
        self.assertIsNone(cache.get("b"))
        self.assertEqual(cache.get("c"), 3)

    def test_clear_drops_everything(self) -> None:
        cache = QueryCache(ttl_seconds=60, max_entries=16)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        self.assertIsNone(cache.get("a"))
        self.assertEqual(len(cache), 0)


if __name__ == "__main__":
    unittest.main()
