"""Hot in-memory tier with stale-while-revalidate freshness."""

from typing import Dict, Optional, Tuple

from canvas_sync.app.core.scheduler import Clock
from canvas_sync.app.services.sync.models import CacheEntry, EntityPayload, Freshness


class MemoryCache:
    """Per-entity payload cache.

    Entries younger than ``ttl`` are fresh, younger than ``2 * ttl`` stale,
    older than that expired. Expired entries are evicted on lookup.
    """

    def __init__(self, ttl: float, clock: Optional[Clock] = None) -> None:
        self.ttl = ttl
        self._clock = clock or Clock()
        self._entries: Dict[str, CacheEntry] = {}

    def lookup(self, entity_id: str) -> Tuple[Optional[CacheEntry], Optional[Freshness]]:
        """Return the entry and its freshness, evicting it if expired.

        Returns:
            ``(entry, freshness)``; ``(None, None)`` when absent and
            ``(None, Freshness.EXPIRED)`` when an expired entry was evicted.
        """
        entry = self._entries.get(entity_id)
        if entry is None:
            return None, None
        freshness = entry.freshness(self._clock.now(), self.ttl)
        if freshness is Freshness.EXPIRED:
            del self._entries[entity_id]
            return None, Freshness.EXPIRED
        return entry, freshness

    def get(self, entity_id: str) -> Optional[EntityPayload]:
        entry, _ = self.lookup(entity_id)
        return entry.payload if entry else None

    def put(self, entity_id: str, payload: EntityPayload, trusted: bool = True) -> CacheEntry:
        entry = CacheEntry(payload=payload, written_at=self._clock.now(), trusted=trusted)
        self._entries[entity_id] = entry
        return entry

    def invalidate(self, entity_id: str) -> bool:
        return self._entries.pop(entity_id, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
