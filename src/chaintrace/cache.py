"""
Bounded, time-expiring memoization for data source calls.
"""
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Hashable, Optional, Tuple

from chaintrace.config import EngineConfig

logger = logging.getLogger(__name__)

_MISSING = object()


def make_key(chain: str, operation: str, *args: Any) -> Tuple[Any, ...]:
    """Cache key for a data source call: (chain, operation, arguments...)."""
    return (chain, operation) + tuple(args)


class ResultCache:
    """
    Insertion-ordered cache with a TTL and a hard entry cap.

    Expired entries are dropped lazily when looked up. When the cap is reached
    the oldest-inserted entry is evicted before a new key is admitted. None is
    a cacheable value, so a lookup that found nothing is remembered too.
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries if max_entries is not None else EngineConfig.CACHE_MAX_ENTRIES
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else EngineConfig.CACHE_TTL_SECONDS
        if self.max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._clock = clock
        # key -> (value, inserted_at)
        self._entries: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()

        self.hits = 0
        self.misses = 0

    def _lookup(self, key: Hashable) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        value, inserted_at = entry
        if self._clock() - inserted_at > self.ttl_seconds:
            self.delete(key)
            return _MISSING
        return value

    def get(self, key: Hashable) -> Any:
        value = self._lookup(key)
        return None if value is _MISSING else value

    def __contains__(self, key: Hashable) -> bool:
        return self._lookup(key) is not _MISSING

    def set(self, key: Hashable, value: Any) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_entries:
            oldest_key, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted {oldest_key!r}")
        self._entries[key] = (value, self._clock())

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_compute(self, key: Hashable, producer: Callable[[], Awaitable[Any]]) -> Any:
        cached = self._lookup(key)
        if cached is not _MISSING:
            self.hits += 1
            return cached

        self.misses += 1
        value = await producer()
        self.set(key, value)
        return value
