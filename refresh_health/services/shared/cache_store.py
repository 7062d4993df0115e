from __future__ import annotations

import time
from collections import OrderedDict
from threading import Event, RLock
from typing import Any, Callable


class QueryCache:
    """TTL + LRU cache with single-flight loading.

    Concurrent callers for the same key share one in-flight load. A loader
    that raises is never cached, so the next caller retries.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._inflight: dict[str, Event] = {}
        self._lock = RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> Any:
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return value
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cached(self, key: str, loader: Callable[[], Any], ttl_seconds: float | None = None) -> Any:
        existing = self.get(key)
        if existing is not None:
            return existing

        with self._lock:
            wait_event = self._inflight.get(key)
            is_loader = wait_event is None
            if is_loader:
                wait_event = Event()
                self._inflight[key] = wait_event

        if not is_loader:
            ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
            wait_event.wait(timeout=max(ttl, 1.0))
            shared = self.get(key)
            if shared is not None:
                return shared
            # The leading load failed or expired already; load for ourselves.
            return self.set(key, loader(), ttl_seconds=ttl_seconds)

        try:
            return self.set(key, loader(), ttl_seconds=ttl_seconds)
        finally:
            with self._lock:
                event = self._inflight.pop(key, None)
            if event is not None:
                event.set()
