"""
TTL cache for catalog lookups.

Catalog metadata changes rarely, so staleness rather than memory pressure
drives eviction: entries expire a fixed time after insertion, and a
background sweep physically drops expired entries so an idle cache does
not grow without bound.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from .. import config
from ..models import CacheEntry, CacheStats

V = TypeVar("V")


class MetadataCache(Generic[V]):
    def __init__(self,
                 ttl: float = config.CACHE_TTL_SECONDS,
                 sweep_interval: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if sweep_interval is None:
            sweep_interval = ttl / 6
        if sweep_interval <= 0 or sweep_interval >= ttl:
            raise ValueError(f"sweep_interval must be in (0, ttl), got {sweep_interval}")

        self._ttl = float(ttl)
        self._sweep_interval = float(sweep_interval)
        self._clock = clock

        self._lock = threading.Lock()
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def sweep_interval(self) -> float:
        return self._sweep_interval

    def get(self, key: Hashable) -> Tuple[Optional[V], bool]:
        """Returns (value, True) on a live hit, (None, False) otherwise."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None, False
            if self._is_expired(entry, self._clock()):
                # Lazy expiry: stale entries are dropped on read, before any sweep
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None, False
            self._hits += 1
            return entry.value, True

    def set(self, key: Hashable, value: V):
        with self._lock:
            self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def clear(self):
        """Drops every entry and zeroes the counters. TTL is left alone."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                entries=len(self._entries),
            )

    def sweep(self) -> int:
        """Removes expired entries. Returns how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for k in expired:
                del self._entries[k]
            self._evictions += len(expired)
        if expired:
            logging.debug(f"Cache sweep evicted {len(expired)} entries")
        return len(expired)

    # --- Background sweep ---

    def start(self) -> "MetadataCache[V]":
        """Starts the sweep thread. Idempotent."""
        if self._sweeper and self._sweeper.is_alive():
            return self
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="metadata-cache-sweep", daemon=True
        )
        self._sweeper.start()
        return self

    def close(self):
        """Stops the sweep thread. The cache stays usable (without sweeping)."""
        self._stop.set()
        if self._sweeper and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=self._sweep_interval + 1)
        self._sweeper = None

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def _sweep_loop(self):
        while not self._stop.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                # Pure bookkeeping; a failed pass is retried next interval
                logging.exception("Metadata cache sweep failed")

    def __enter__(self) -> "MetadataCache[V]":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        _, found = self._peek(key)
        return found

    def _peek(self, key: Hashable) -> Tuple[Optional[V], bool]:
        # Like get() but without touching the counters
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._is_expired(entry, self._clock()):
                return None, False
            return entry.value, True

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at >= self._ttl
