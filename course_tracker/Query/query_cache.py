# query_cache.py
# Description: In-memory query cache with stale time and in-flight request deduplication.
#
# Imports
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from course_tracker.config import get_setting
#
#######################################################################################################################
#
# Functions:

QueryKey = Tuple[Hashable, ...]


@dataclass
class _CacheEntry:
    value: Any
    fetched_at: float


class QueryCache:
    """
    Caches query results by tuple key.

    - A cached value younger than `stale_time` seconds is returned without fetching.
    - Concurrent `fetch()` calls for the same key while a fetch is running share
      that single in-flight task.
    - `invalidate(prefix)` drops every key that starts with `prefix`.

    A failed fetch is not cached; every caller waiting on it receives the error.
    """

    def __init__(self, stale_time: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.stale_time = stale_time if stale_time is not None else get_setting(
            "cache", "stale_time_seconds", 300.0, float)
        self._clock = clock
        self._entries: Dict[QueryKey, _CacheEntry] = {}
        self._in_flight: Dict[QueryKey, asyncio.Task] = {}
        # In-flight keys invalidated after their fetch started; their result is not cached.
        self._invalidated_in_flight: set = set()

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def keys(self) -> List[QueryKey]:
        return list(self._entries)

    def get(self, key: QueryKey) -> Optional[Any]:
        """Returns the cached value for `key` if it is still fresh."""
        entry = self._entries.get(key)
        if entry is None or self._is_stale(entry):
            return None
        return entry.value

    def set(self, key: QueryKey, value: Any):
        self._entries[key] = _CacheEntry(value=value, fetched_at=self._clock())

    def _is_stale(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.fetched_at >= self.stale_time

    async def fetch(self, key: QueryKey, fetcher: Callable[[], Awaitable[Any]], force: bool = False) -> Any:
        """
        Returns a fresh cached value, joins a running fetch for `key`, or starts one.

        Args:
            key: Query key tuple.
            fetcher: Coroutine function producing the value.
            force: Skip the cached value (a running fetch is still shared).
        """
        if not force:
            entry = self._entries.get(key)
            if entry is not None and not self._is_stale(entry):
                return entry.value

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, fetcher))
            self._in_flight[key] = task
        else:
            logger.debug(f"Query {key} joined an in-flight fetch")
        # Shielded so one caller's cancellation does not cancel the shared fetch.
        return await asyncio.shield(task)

    async def _run(self, key: QueryKey, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await fetcher()
            if key in self._invalidated_in_flight:
                logger.debug(f"Query {key} was invalidated during its fetch; result not cached")
            else:
                self.set(key, value)
            return value
        finally:
            self._invalidated_in_flight.discard(key)
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    def invalidate(self, prefix: QueryKey = ()) -> List[QueryKey]:
        """
        Drops cached entries whose key starts with `prefix` (everything for an empty prefix).

        Returns:
            The keys that were removed.
        """
        prefix = tuple(prefix)
        removed = [key for key in self._entries if key[:len(prefix)] == prefix]
        for key in removed:
            del self._entries[key]
        self._invalidated_in_flight.update(key for key in self._in_flight if key[:len(prefix)] == prefix)
        if removed:
            logger.debug(f"Invalidated {len(removed)} cached queries for prefix {prefix}")
        return removed

    def clear(self) -> List[QueryKey]:
        return self.invalidate(())

#
# End of query_cache.py
#######################################################################################################################
