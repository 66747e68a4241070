"""
Snapshot Cache - Per-hazard freshness cache for the gateway.

============================================================
KEYING
============================================================
Entries are keyed by (location cache key, hazard, sweep bucket) where
sweep_bucket = floor(epoch_seconds / ttl). Each entry also carries an
explicit expires_at.

Concurrent fills of the same key are allowed; the last writer wins.
============================================================
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from core.clock import ClockFactory, ClockProtocol
from data_sources.models import (
    EnvironmentalSnapshot,
    HazardType,
    Location,
)


logger = logging.getLogger(__name__)


CacheKey = Tuple[str, HazardType, int]


@dataclass(frozen=True)
class CacheEntry:
    """A cached single-hazard snapshot part."""
    snapshot: EnvironmentalSnapshot
    expires_at: datetime


class SnapshotCache:
    """
    In-process snapshot cache with explicit TTL per hazard.

    Usage:
        cache = SnapshotCache(ttl_for=config.ttl_for)
        cache.put(snapshot)
        part = cache.get(location, HazardType.DROUGHT)
    """

    def __init__(
        self,
        ttl_for: Callable[[HazardType], int],
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._ttl_for = ttl_for
        self._clock = clock or ClockFactory.get_clock()
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def make_key(self, location: Location, hazard: HazardType, at: Optional[datetime] = None) -> CacheKey:
        """Build the cache key for a location and hazard at a given time."""
        at = at or self._clock.now()
        ttl = self._ttl_for(hazard)
        bucket = int(at.timestamp() // ttl)
        return (location.cache_key(), hazard, bucket)

    def get(self, location: Location, hazard: HazardType) -> Optional[EnvironmentalSnapshot]:
        """Get a fresh single-hazard part, or None."""
        now = self._clock.now()
        entry = self._entries.get(self.make_key(location, hazard, now))
        if entry is None or entry.expires_at <= now:
            self._misses += 1
            return None
        self._hits += 1
        return entry.snapshot

    def put(self, snapshot: EnvironmentalSnapshot) -> None:
        """Store one entry per hazard the snapshot covers."""
        now = self._clock.now()
        for hazard in snapshot.hazards:
            part = snapshot.for_hazard(hazard)
            expires_at = now + timedelta(seconds=self._ttl_for(hazard))
            self._entries[self.make_key(snapshot.location, hazard, now)] = CacheEntry(
                snapshot=part,
                expires_at=expires_at,
            )
        self.purge_expired(now)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop expired entries. Returns the number removed."""
        now = now or self._clock.now()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired snapshot cache entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, int]:
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }
