"""
Query Result Cache

Provides in-memory memoization of query execution results with TTL.
Entries are keyed by query id plus a canonical serialization of the
parameters, so the same invocation always maps to the same entry.
"""

import time
from typing import Any, Callable, Dict, List, Optional
import structlog

from query_runtime.models import CacheEntry, QueryExecutionResult
from query_runtime.utils import make_cache_key

logger = structlog.get_logger()


class ResultCache:
    """
    In-memory cache for query results with per-entry TTL and a global size budget.

    Cache structure:
    {
        query_id: [CacheEntry(cache_key="q1:{...}", timestamp=..., ttl_seconds=...), ...]
    }

    Staleness is decided at read time: a stale entry is reported as a miss but
    stays in place until it is evicted, cleared or pruned. When the budget is
    exceeded the globally oldest entry (by insertion time) goes first.
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            max_size: Maximum number of entries across all queries
            default_ttl_seconds: TTL used when put() is not given one
            clock: Source of the current time in seconds
        """
        self.by_query_id: Dict[str, List[CacheEntry]] = {}
        self.max_size = max_size
        self.default_ttl_seconds = default_ttl_seconds
        self.current_size = 0
        self._keys: Dict[str, str] = {}  # cache_key -> query_id
        self._clock = clock
        self._sequence = 0
        self.hits = 0
        self.misses = 0
        logger.info("ResultCache initialized", max_size=max_size, default_ttl_seconds=default_ttl_seconds)

    @property
    def cache_keys(self) -> List[str]:
        return list(self._keys)

    def put(
        self,
        query_id: str,
        parameters: Optional[Dict[str, Any]],
        result: QueryExecutionResult,
        ttl_seconds: Optional[int] = None,
    ) -> CacheEntry:
        """
        Cache a result for (query_id, parameters).

        An existing entry with the same key is replaced. If the cache is over
        budget afterwards, the oldest entries across all queries are evicted.
        """
        parameters = dict(parameters or {})
        cache_key = make_cache_key(query_id, parameters)

        # Same signature: the new result supersedes the old one
        self._remove(query_id, cache_key)

        self._sequence += 1
        entry = CacheEntry(
            result=result,
            timestamp=self._clock(),
            ttl_seconds=ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds,
            parameters=parameters,
            cache_key=cache_key,
            sequence=self._sequence,
        )
        self.by_query_id.setdefault(query_id, []).append(entry)
        self._keys[cache_key] = query_id
        self.current_size += 1

        logger.debug("Result cached", query_id=query_id, cache_key=cache_key, ttl_seconds=entry.ttl_seconds)

        while self.current_size > self.max_size:
            self._evict_oldest()

        return entry

    def lookup(self, query_id: str, parameters: Optional[Dict[str, Any]]) -> Optional[QueryExecutionResult]:
        """Return the cached result for (query_id, parameters), or None on a miss or stale entry"""
        entry = self.find_entry(query_id, parameters)
        if entry is None:
            self.misses += 1
            logger.debug("Result cache miss", query_id=query_id)
            return None

        self.hits += 1
        logger.info(
            "Result cache hit",
            query_id=query_id,
            age_seconds=int(entry.age(self._clock()))
        )
        return entry.result

    def find_entry(self, query_id: str, parameters: Optional[Dict[str, Any]]) -> Optional[CacheEntry]:
        """Non-stale entry for (query_id, parameters) without touching hit/miss counters"""
        cache_key = make_cache_key(query_id, parameters)
        now = self._clock()
        for entry in self.by_query_id.get(query_id, []):
            if entry.cache_key == cache_key and not entry.is_stale(now):
                return entry
        return None

    def evict(self, query_id: str, cache_key: str) -> bool:
        """
        Remove one entry. Evicting an absent entry is a no-op.

        Returns:
            True if an entry was removed
        """
        removed = self._remove(query_id, cache_key)
        if removed:
            logger.info("Result cache entry evicted", query_id=query_id, cache_key=cache_key)
        return removed > 0

    def clear(self, query_id: Optional[str] = None) -> int:
        """
        Clear one query's entries, or the entire cache when query_id is None.

        Returns:
            Number of entries removed
        """
        if query_id is None:
            removed = self.current_size
            self.by_query_id.clear()
            self._keys.clear()
            self.current_size = 0
            logger.info("Result cache cleared", entries_removed=removed)
            return removed

        entries = self.by_query_id.pop(query_id, [])
        for entry in entries:
            self._keys.pop(entry.cache_key, None)
        self.current_size -= len(entries)
        if entries:
            logger.info("Result cache cleared for query", query_id=query_id, entries_removed=len(entries))
        return len(entries)

    def prune_stale(self) -> int:
        """Physically remove every stale entry. Returns the number removed."""
        now = self._clock()
        stale = [
            (query_id, entry.cache_key)
            for query_id, entries in self.by_query_id.items()
            for entry in entries
            if entry.is_stale(now)
        ]
        for query_id, cache_key in stale:
            self._remove(query_id, cache_key)
        if stale:
            logger.info("Stale cache entries pruned", entries_removed=len(stale))
        return len(stale)

    def entries(self, query_id: str) -> List[CacheEntry]:
        return list(self.by_query_id.get(query_id, []))

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        lookups = self.hits + self.misses
        now = self._clock()
        stats = {
            "size": self.current_size,
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "queries": []
        }

        for query_id, entries in self.by_query_id.items():
            stats["queries"].append({
                "query_id": query_id,
                "entries": len(entries),
                "stale_entries": sum(1 for entry in entries if entry.is_stale(now)),
            })

        return stats

    def _remove(self, query_id: str, cache_key: str) -> int:
        entries = self.by_query_id.get(query_id)
        if not entries:
            return 0

        kept = [entry for entry in entries if entry.cache_key != cache_key]
        removed = len(entries) - len(kept)
        if not removed:
            return 0

        if kept:
            self.by_query_id[query_id] = kept
        else:
            del self.by_query_id[query_id]
        self._keys.pop(cache_key, None)
        self.current_size -= removed
        return removed

    def _evict_oldest(self) -> None:
        oldest_query_id = None
        oldest = None
        for query_id, entries in self.by_query_id.items():
            for entry in entries:
                if oldest is None or (entry.timestamp, entry.sequence) < (oldest.timestamp, oldest.sequence):
                    oldest_query_id, oldest = query_id, entry

        if oldest is None:
            # Counter drifted from the entry lists
            self.current_size = 0
            return

        self._remove(oldest_query_id, oldest.cache_key)
        logger.info(
            "Result cache over budget, evicted oldest entry",
            query_id=oldest_query_id,
            cache_key=oldest.cache_key,
            max_size=self.max_size
        )
