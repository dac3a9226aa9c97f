"""
Bounded LRU cache for transform states.

Entries own heavy numeric buffers and are released through an explicit
dispose callback, exactly once, when they are evicted, replaced or cleared.
An entry that is pinned by an in-flight computation is unlinked from the
cache immediately but released only when its last pin is dropped.

The cache is not thread-safe; the engine mutates it from its event loop only.
"""

import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("bandscope.cache")

FORWARD_CACHE_SIZE = 4
FILTER_CACHE_SIZE = 6


class CacheEntry:
    """A cached state plus the callback that releases it."""
    __slots__ = ('key', 'state', 'dispose', 'pins', 'evicted', 'released')

    def __init__(self, key: str, state: Any, dispose: Optional[Callable[[Any], None]] = None):
        self.key = key
        self.state = state
        self.dispose = dispose
        self.pins = 0
        self.evicted = False
        self.released = False

    def release(self) -> bool:
        """Run the dispose callback once. Returns False if already released."""
        if self.released:
            return False
        self.released = True
        if self.dispose is not None:
            try:
                self.dispose(self.state)
            except Exception as e:
                logger.warning(f"Dispose failed for cache entry {self.key}: {str(e)}")
        self.state = None
        return True

    def __repr__(self):
        return f"CacheEntry({self.key!r}, pins={self.pins}, evicted={self.evicted}, released={self.released})"


class LRUCache:
    """
    Insertion-ordered LRU map of CacheEntry objects.

    Args:
        max_size: Maximum number of live entries
        name: Label used in logs and stats
    """

    def __init__(self, max_size: int, name: str = 'cache'):
        if max_size < 1:
            raise ValueError(f"Cache size must be at least 1, got {max_size}")
        self.max_size = max_size
        self.name = name
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._metrics = {
            'hits': 0,
            'misses': 0,
            'evictions': 0,
            'deferred_releases': 0,
        }

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return key in self._entries

    def keys(self):
        return list(self._entries.keys())

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for key and mark it most recently used."""
        entry = self._entries.get(key)
        if entry is None:
            self._metrics['misses'] += 1
            logger.debug(f"{self.name} cache miss: {key}")
            return None
        self._entries.move_to_end(key)
        self._metrics['hits'] += 1
        logger.debug(f"{self.name} cache hit: {key}")
        return entry

    def set(self, key: str, state: Any, dispose: Optional[Callable[[Any], None]] = None) -> CacheEntry:
        """
        Insert a state as the most recently used entry.

        Replacing an existing key releases the previous entry. Inserting past
        capacity evicts least recently used entries.
        """
        previous = self._entries.pop(key, None)
        entry = CacheEntry(key, state, dispose)
        self._entries[key] = entry
        if previous is not None and previous.state is not state:
            self._retire(previous)

        while len(self._entries) > self.max_size:
            _, oldest = self._entries.popitem(last=False)
            self._metrics['evictions'] += 1
            logger.debug(f"{self.name} cache evicting {oldest.key}")
            self._retire(oldest)
        return entry

    def pin(self, entry: CacheEntry):
        """Keep entry's state alive while a computation uses it."""
        entry.pins += 1

    def unpin(self, entry: CacheEntry):
        """Drop a pin; releases the entry if it was evicted meanwhile."""
        if entry.pins <= 0:
            logger.warning(f"Unbalanced unpin of {entry.key}")
            return
        entry.pins -= 1
        if entry.pins == 0 and entry.evicted:
            entry.release()

    def _retire(self, entry: CacheEntry):
        entry.evicted = True
        if entry.pins > 0:
            self._metrics['deferred_releases'] += 1
            logger.debug(f"{self.name} cache deferring release of pinned {entry.key}")
            return
        entry.release()

    def clear(self):
        """Release every entry (pinned ones when they are unpinned)."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            self._retire(entry)

    def get_stats(self) -> Dict:
        stats = self._metrics.copy()
        stats['size'] = len(self._entries)
        stats['max_size'] = self.max_size
        stats['pinned'] = sum(1 for e in self._entries.values() if e.pins)
        lookups = stats['hits'] + stats['misses']
        if lookups > 0:
            stats['hit_rate'] = stats['hits'] / lookups
        return stats
