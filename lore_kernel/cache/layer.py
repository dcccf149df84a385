"""
Cache Layer — best-effort read-through cache on the key-value store.

Behavioral Contract:
- Every cached value is wrapped in a CacheEnvelope carrying its own expiry;
  the store-level TTL is applied too, so either mechanism evicts it.
- Keys are recorded in a registry record, so prefix invalidation deletes
  exactly the registered keys without scanning the store.
- Cache failures never fail the caller: they are counted, logged as
  warnings, and the read falls through to the fetch function.
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from loguru import logger
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from lore_kernel.errors import CorruptedRecordError, StoreUnavailableError
from lore_kernel.models.cache import CacheEnvelope, CacheKeyRegistry, CacheStats
from lore_kernel.models.config import CacheConfig
from lore_kernel.storage import keys
from lore_kernel.storage.records import RecordStore

_CACHE_FAILURES = (StoreUnavailableError, CorruptedRecordError, PydanticValidationError)

_MISSING = object()


class CacheLayer:
    """Read-through TTL cache. Hit/miss counters live in the CacheStats it is given."""

    def __init__(
        self,
        records: RecordStore,
        config: Optional[CacheConfig] = None,
        stats: Optional[CacheStats] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.records = records
        self.config = config or CacheConfig()
        self._clock = clock
        self._stats = stats or CacheStats(last_reset=clock())
        self._stats_lock = threading.Lock()

    # --- counters ---

    def _count(self, hit: bool = False, miss: bool = False, error: bool = False) -> None:
        with self._stats_lock:
            self._stats.total_requests += 1 if (hit or miss) else 0
            self._stats.hits += 1 if hit else 0
            self._stats.misses += 1 if miss else 0
            self._stats.errors += 1 if error else 0

    def stats(self) -> CacheStats:
        """Snapshot of the counters with the hit rate computed."""
        with self._stats_lock:
            snapshot = self._stats.model_copy()
        if snapshot.total_requests:
            snapshot.hit_rate = round(snapshot.hits / snapshot.total_requests, 4)
        return snapshot

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats.hits = 0
            self._stats.misses = 0
            self._stats.errors = 0
            self._stats.total_requests = 0
            self._stats.hit_rate = 0.0
            self._stats.last_reset = self._clock()

    # --- reads ---

    def _lookup(self, key: str, type_: Any) -> Any:
        """Return the cached value, or _MISSING. Raises on store or decode failure."""
        envelope = self.records.get(key, CacheEnvelope)
        if envelope is None:
            return _MISSING
        if envelope.expires_at <= self._clock():
            return _MISSING
        if type_ is None:
            return envelope.data
        return TypeAdapter(type_).validate_python(envelope.data)

    def get(self, key: str, type_: Any = None) -> Optional[Any]:
        """Cached value for key, or None on miss or failure."""
        if not self.config.enabled:
            return None
        try:
            value = self._lookup(key, type_)
        except _CACHE_FAILURES as exc:
            self._count(miss=True, error=True)
            logger.warning("Cache read failed for {}: {}", key, exc)
            return None
        if value is _MISSING:
            self._count(miss=True)
            return None
        self._count(hit=True)
        return value

    def get_or_set(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        ttl_seconds: int,
        type_: Any = None,
        force_refresh: bool = False,
    ) -> Any:
        """
        Serve key from the cache, or call fetch_fn, cache its result and return it.
        Errors raised by fetch_fn itself propagate.
        """
        if not self.config.enabled:
            return fetch_fn()

        if not force_refresh:
            try:
                value = self._lookup(key, type_)
            except _CACHE_FAILURES as exc:
                self._count(miss=True, error=True)
                logger.warning("Cache read failed for {}, fetching: {}", key, exc)
            else:
                if value is not _MISSING:
                    self._count(hit=True)
                    logger.debug("Cache hit: {}", key)
                    return value
                self._count(miss=True)
                logger.debug("Cache miss: {}", key)

        value = fetch_fn()
        self.set(key, value, ttl_seconds)
        return value

    # --- writes ---

    def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Cache value under key. Returns False if the write failed."""
        if not self.config.enabled:
            return False
        now = self._clock()
        envelope = CacheEnvelope(
            data=value,
            cached_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        try:
            self._register(key)
            self.records.put(key, envelope)
            self.records.kv.expire(key, ttl_seconds)
        except _CACHE_FAILURES as exc:
            with self._stats_lock:
                self._stats.errors += 1
            logger.warning("Cache write failed for {}: {}", key, exc)
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            deleted = self.records.kv.delete(key)
            self._unregister([key])
        except _CACHE_FAILURES as exc:
            logger.warning("Cache delete failed for {}: {}", key, exc)
            return False
        return deleted

    def invalidate(self, prefix: str) -> int:
        """Delete every registered cache key starting with prefix. Returns the count."""
        try:
            registry = self.records.get(keys.CACHE_REGISTRY, CacheKeyRegistry)
            if registry is None:
                return 0
            matched = [k for k in registry.keys if k.startswith(prefix)]
            for key in matched:
                self.records.kv.delete(key)
            if matched:
                self._unregister(matched)
        except _CACHE_FAILURES as exc:
            logger.warning("Cache invalidation failed for prefix {}: {}", prefix, exc)
            return 0
        if matched:
            logger.debug("Invalidated {} cache keys with prefix {}", len(matched), prefix)
        return len(matched)

    def clear(self) -> int:
        return self.invalidate(keys.CACHE_PREFIX)

    # --- registry ---

    def _register(self, key: str) -> None:
        def add(registry: CacheKeyRegistry) -> Optional[CacheKeyRegistry]:
            if key in registry.keys:
                return None
            registry.keys.append(key)
            return registry

        self.records.update(keys.CACHE_REGISTRY, CacheKeyRegistry, add, default_factory=CacheKeyRegistry)

    def _unregister(self, removed: List[str]) -> None:
        gone = set(removed)

        def drop(registry: CacheKeyRegistry) -> Optional[CacheKeyRegistry]:
            remaining = [k for k in registry.keys if k not in gone]
            if len(remaining) == len(registry.keys):
                return None
            registry.keys = remaining
            return registry

        self.records.update(keys.CACHE_REGISTRY, CacheKeyRegistry, drop, default_factory=CacheKeyRegistry)
