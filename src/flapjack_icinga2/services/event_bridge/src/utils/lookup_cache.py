"""Short-lived cache for object lookup results."""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class LookupCache:
    """
    TTL cache with LRU eviction for enrichment lookups.

    Features:
    - Per-entry expiry after ``ttl_seconds``
    - Oldest entries evicted beyond ``max_entries``
    - Hit/miss statistics
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock

        # key -> (expires_at, value), oldest first
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()

        self.stats = {
            'hits': 0,
            'misses': 0,
            'evictions': 0
        }

        logger.info(f"LookupCache initialized: ttl={ttl_seconds}s, max_entries={max_entries}")

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.stats['misses'] += 1
            return None

        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.stats['misses'] += 1
            return None

        self._entries.move_to_end(key)
        self.stats['hits'] += 1
        return value

    def put(self, key: Hashable, value: Any):
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.stats['evictions'] += 1

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        lookups = self.stats['hits'] + self.stats['misses']
        return {
            **self.stats,
            'entries': len(self._entries),
            'hit_rate': self.stats['hits'] / lookups if lookups else 0.0
        }
