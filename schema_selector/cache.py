"""Schema source cache for the schema selection function.

Holds one ``SchemaDefinitionIndex`` per schema source with TTL support and a
bounded number of entries, together with the resolved definitions computed from
that source so repeated tree requests do not re-run reference resolution.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .schema_index import SchemaDefinitionIndex
from .schema_nodes import SchemaNode

SourceLoader = Callable[[], Awaitable[SchemaDefinitionIndex]]


@dataclass
class CacheEntry:
    """Cache entry with TTL support."""
    index: SchemaDefinitionIndex
    timestamp: float
    last_access: float
    hits: int = 0
    resolved: dict[str, tuple[SchemaNode, int]] = field(default_factory=dict)


class SchemaSourceCache:
    """Cache of loaded schema sources keyed by source id."""

    def __init__(self, ttl_seconds: int = 3600, max_entries: int = 16):
        """Initialize cache with TTL and size limits.

        Args:
            ttl_seconds: Time to live for a loaded source (default: 1 hour)
            max_entries: Maximum number of sources kept at once (default: 16)
        """
        self.cache: dict[str, CacheEntry] = {}
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.misses = 0
        self._locks: dict[str, asyncio.Lock] = {}
        self.logger = logging.getLogger(__name__)

    async def load(self, source_id: str, loader: SourceLoader) -> SchemaDefinitionIndex:
        """Return the cached index for a source, loading it on a miss.

        Concurrent loads of the same source share a single loader call. A loader
        failure propagates and leaves nothing cached.

        Args:
            source_id: Schema source identifier
            loader: Coroutine factory producing the index

        Returns:
            The index for ``source_id``
        """
        index = self.get(source_id)
        if index is not None:
            return index

        lock = self._locks.setdefault(source_id, asyncio.Lock())
        try:
            async with lock:
                index = self.get(source_id)
                if index is not None:
                    return index

                self.logger.debug(f"Loading schema source: {source_id}")
                index = await loader()
                self.put(source_id, index)
                return index
        finally:
            if source_id not in self.cache:
                self._drop_lock(source_id)

    def get(self, source_id: str) -> SchemaDefinitionIndex | None:
        """Get a cached index.

        Returns:
            The index if present and not expired, None otherwise
        """
        entry = self._entry(source_id)
        if entry is None:
            self.misses += 1
            return None

        entry.hits += 1
        entry.last_access = time.time()
        self.logger.debug(f"Cache hit: {source_id} (hits: {entry.hits})")
        return entry.index

    def put(self, source_id: str, index: SchemaDefinitionIndex) -> None:
        """Cache a loaded index, replacing any previous entry for the source."""
        if source_id not in self.cache and len(self.cache) >= self.max_entries:
            self._evict_lru()

        now = time.time()
        self.cache[source_id] = CacheEntry(index=index, timestamp=now, last_access=now)
        self.logger.debug(f"Cache set: {source_id}")

    def invalidate(self, source_id: str | None = None) -> None:
        """Drop one source, or every source when ``source_id`` is None."""
        if source_id is None:
            self.clear()
            return

        if self._remove(source_id):
            self.logger.info(f"Invalidated schema source: {source_id}")

    def get_resolved(
        self, source_id: str, definition_name: str
    ) -> tuple[SchemaNode, int] | None:
        """Get a memoized resolved definition and its serialized size."""
        entry = self._entry(source_id)
        if entry is None:
            return None
        return entry.resolved.get(definition_name)

    def set_resolved(
        self, source_id: str, definition_name: str, node: SchemaNode, size: int
    ) -> None:
        """Memoize a resolved definition; ignored if the source is not cached."""
        entry = self._entry(source_id)
        if entry is not None:
            entry.resolved[definition_name] = (node, size)

    def _entry(self, source_id: str) -> CacheEntry | None:
        entry = self.cache.get(source_id)
        if entry is None:
            return None

        if time.time() - entry.timestamp > self.ttl_seconds:
            self.logger.debug(f"Cache entry expired: {source_id}")
            self._remove(source_id)
            return None
        return entry

    def _drop_lock(self, source_id: str) -> None:
        lock = self._locks.get(source_id)
        if lock is not None and not lock.locked():
            del self._locks[source_id]

    def _remove(self, source_id: str) -> bool:
        """Drop an entry and its load lock unless a load is in progress."""
        self._drop_lock(source_id)
        return self.cache.pop(source_id, None) is not None

    def _evict_lru(self) -> None:
        """Evict the least recently used source."""
        if not self.cache:
            return

        oldest_key = min(self.cache.keys(), key=lambda k: self.cache[k].last_access)
        self._remove(oldest_key)
        self.logger.debug(f"Evicted cache entry: {oldest_key}")

    def clear(self) -> None:
        """Clear all cache entries."""
        self.cache.clear()
        self._locks = {k: lock for k, lock in self._locks.items() if lock.locked()}
        self.logger.info("Cache cleared")

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary containing cache statistics
        """
        total_hits = sum(entry.hits for entry in self.cache.values())
        lookups = total_hits + self.misses
        current_time = time.time()

        return {
            "entries": len(self.cache),
            "sources": sorted(self.cache),
            "resolved_definitions": sum(len(e.resolved) for e in self.cache.values()),
            "total_hits": total_hits,
            "misses": self.misses,
            "hit_rate": total_hits / lookups if lookups else 0.0,
            "oldest_entry_age": max(
                (current_time - e.timestamp for e in self.cache.values()), default=0
            ),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
        }

    def cleanup_expired(self) -> int:
        """Clean up expired cache entries.

        Returns:
            Number of entries removed
        """
        current_time = time.time()
        expired_keys = [
            key
            for key, entry in self.cache.items()
            if current_time - entry.timestamp > self.ttl_seconds
        ]

        for key in expired_keys:
            self._remove(key)

        if expired_keys:
            self.logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

        return len(expired_keys)
