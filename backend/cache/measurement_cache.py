"""
In-memory measurement cache with per-entry TTL.

Entries expire lazily on read and eagerly from a background cleanup thread.
When full, the single oldest entry (by insertion timestamp) is evicted before
an insert. Snapshot format: {"cache": {...}, "timestamps": {...},
"accessCount": {...}, "ttl": {...}}; callables are never exported.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Iterable, Mapping, Optional

_LOG = logging.getLogger(__name__)

_MISSING = object()


class MeasurementCache:
    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 1000,
        cleanup_interval: float = 60.0,
        enable_stats: bool = True,
        auto_cleanup: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.ttl = float(ttl)
        self.max_size = int(max_size)
        self.cleanup_interval = float(cleanup_interval)
        self.enable_stats = enable_stats
        self._clock = clock

        self._values: dict[str, Any] = {}
        self._timestamps: dict[str, float] = {}
        self._access_count: dict[str, int] = {}
        self._ttls: dict[str, float] = {}
        self._compute_cost: dict[str, float] = {}
        self._inflight: dict[str, Future] = {}
        self._lock = threading.RLock()

        self.stats = self._empty_stats()

        self._cleanup_stop: Optional[threading.Event] = None
        self._cleanup_thread: Optional[threading.Thread] = None
        if auto_cleanup and self.cleanup_interval > 0:
            self.start_auto_cleanup()

        _LOG.info("CACHE_INIT ttl=%s max_size=%s cleanup_interval=%s", self.ttl, self.max_size, self.cleanup_interval)

    @staticmethod
    def _empty_stats() -> dict[str, float]:
        return {"hits": 0, "misses": 0, "evictions": 0, "expirations": 0, "totalSaved": 0.0}

    def _count(self, name: str, amount: float = 1) -> None:
        if self.enable_stats:
            self.stats[name] += amount

    @staticmethod
    def generate_key(kind: str, params: Optional[Mapping[str, Any]] = None) -> str:
        ordered = "|".join(f"{k}:{params[k]}" for k in sorted(params or {}))
        return f"{kind}#{ordered}"

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._values and not self._is_expired(key)

    def _is_expired(self, key: str) -> bool:
        timestamp = self._timestamps.get(key)
        if timestamp is None:
            return True
        ttl = self._ttls.get(key, self.ttl)
        return self._clock() - timestamp > ttl

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            if key not in self._values and len(self._values) >= self.max_size:
                self.evict_oldest()
            self._values[key] = value
            self._timestamps[key] = self._clock()
            self._access_count[key] = 0
            if ttl is not None:
                self._ttls[key] = float(ttl)
            else:
                self._ttls.pop(key, None)
            self._compute_cost.pop(key, None)
        _LOG.debug("CACHE_SET key=%s", key)

    def _lookup(self, key: str) -> Any:
        if key not in self._values:
            self._count("misses")
            return _MISSING
        if self._is_expired(key):
            self._count("expirations")
            self._count("misses")
            self._delete(key)
            return _MISSING
        self._count("hits")
        self._access_count[key] = self._access_count.get(key, 0) + 1
        return self._values[key]

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._lookup(key)
        return default if value is _MISSING else value

    def get_or_calculate(self, key: str, compute: Callable[[], Any]) -> Any:
        """
        Return the cached value for key, or compute, store and return it.

        Concurrent callers missing on the same key share one computation: the
        first caller computes, the others wait on its in-flight future.
        """
        with self._lock:
            value = self._lookup(key)
            if value is not _MISSING:
                self._count("totalSaved", self._compute_cost.get(key, 0.0))
                _LOG.debug("CACHE_HIT key=%s", key)
                return value
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            _LOG.debug("CACHE_WAIT key=%s", key)
            return future.result()

        _LOG.debug("CACHE_MISS key=%s", key)
        started = time.perf_counter()
        try:
            value = compute()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            self.set(key, value)
            with self._lock:
                self._compute_cost[key] = time.perf_counter() - started
            future.set_result(value)
            return value
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def _delete(self, key: str) -> None:
        self._values.pop(key, None)
        self._timestamps.pop(key, None)
        self._access_count.pop(key, None)
        self._ttls.pop(key, None)
        self._compute_cost.pop(key, None)

    def delete(self, key: str) -> None:
        with self._lock:
            self._delete(key)

    def cleanup(self) -> int:
        """Purge every expired entry; returns how many were removed."""
        with self._lock:
            expired = [key for key in self._values if self._is_expired(key)]
            for key in expired:
                self._delete(key)
            self._count("expirations", len(expired))
        if expired:
            _LOG.info("CACHE_CLEANUP expired=%s", len(expired))
        return len(expired)

    def evict_oldest(self) -> Optional[str]:
        with self._lock:
            if not self._timestamps:
                return None
            oldest = min(self._timestamps, key=self._timestamps.__getitem__)
            self._delete(oldest)
            self._count("evictions")
        _LOG.debug("CACHE_EVICT key=%s reason=oldest", oldest)
        return oldest

    def evict_lru(self, count: int = 1) -> list[str]:
        """Remove the `count` least-accessed entries. Never called automatically."""
        with self._lock:
            ranked = sorted(self._access_count.items(), key=lambda kv: kv[1])
            victims = [key for key, _ in ranked[: max(0, count)]]
            for key in victims:
                self._delete(key)
                self._count("evictions")
        for key in victims:
            _LOG.debug("CACHE_EVICT key=%s reason=lru", key)
        return victims

    def _cleanup_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.cleanup_interval):
            self.cleanup()

    def start_auto_cleanup(self) -> None:
        if self._cleanup_thread is not None:
            return
        stop = threading.Event()
        thread = threading.Thread(target=self._cleanup_loop, args=(stop,), name="measurement-cache-cleanup", daemon=True)
        self._cleanup_stop = stop
        self._cleanup_thread = thread
        thread.start()

    def stop_auto_cleanup(self) -> None:
        if self._cleanup_thread is None:
            return
        self._cleanup_stop.set()
        self._cleanup_thread.join(timeout=self.cleanup_interval + 1.0)
        self._cleanup_thread = None
        self._cleanup_stop = None

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._timestamps.clear()
            self._access_count.clear()
            self._ttls.clear()
            self._compute_cost.clear()
            self.stats = self._empty_stats()
        _LOG.info("CACHE_CLEARED")

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self.stats["hits"] + self.stats["misses"]
            hit_rate = self.stats["hits"] / lookups if lookups else 0.0
            size = len(self._values)
            return {
                **self.stats,
                "hitRate": f"{hit_rate * 100:.2f}%",
                "size": size,
                "maxSize": self.max_size,
                "utilization": f"{size / self.max_size * 100:.2f}%",
            }

    def export_snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            values = {key: value for key, value in self._values.items() if not callable(value)}
            return {
                "cache": values,
                "timestamps": {key: self._timestamps[key] for key in values if key in self._timestamps},
                "accessCount": {key: self._access_count[key] for key in values if key in self._access_count},
                "ttl": {key: self._ttls[key] for key in values if key in self._ttls},
            }

    def import_snapshot(self, data: Any) -> int:
        """
        Replace the cache contents with an exported snapshot, keeping the newest
        `max_size` entries. Non-dict input is ignored.
        """
        if not isinstance(data, Mapping):
            return 0
        with self._lock:
            self.clear()
            now = self._clock()
            for key, value in (data.get("cache") or {}).items():
                self._values[key] = value
                self._timestamps[key] = now
                self._access_count[key] = 0
            for key, value in (data.get("timestamps") or {}).items():
                if key in self._values:
                    self._timestamps[key] = float(value)
            for key, value in (data.get("accessCount") or {}).items():
                if key in self._values:
                    self._access_count[key] = int(value)
            for key, value in (data.get("ttl") or {}).items():
                if key in self._values:
                    self._ttls[key] = float(value)
            while len(self._values) > self.max_size:
                self.evict_oldest()
            imported = len(self._values)
        _LOG.info("CACHE_IMPORT entries=%s", imported)
        return imported

    def warmup(self, entries: Iterable[Mapping[str, Any]]) -> int:
        warmed = 0
        for entry in entries:
            key = entry["key"]
            with self._lock:
                present = key in self._values
            if not present:
                self.set(key, entry.get("value"), entry.get("ttl"))
                warmed += 1
        _LOG.info("CACHE_WARMUP added=%s", warmed)
        return warmed
