"""
In-memory cache for resolved feeder identities.

Every non-ingestion request and every telemetry batch carries an API key.
Verifying it means a database lookup plus a deliberately slow salted
hash check, so successful resolutions are cached for a short TTL.

Entries are keyed by the keyed lookup digest of the API key (never the
key itself) and indexed by feeder id so that a status change can drop
the entry immediately.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CachedIdentity:
    """A verified feeder identity as the admission gate needs it."""
    feeder_id: str
    name: str
    status: str
    tier: str

    # Cache metadata
    cached_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            'feeder_id': self.feeder_id,
            'name': self.name,
            'status': self.status,
            'tier': self.tier,
        }


class CredentialCache:
    """
    Thread-safe TTL cache of verified identities.

    A ttl of 0 disables caching.
    """

    def __init__(self, ttl_seconds: int = 60, max_entries: int = 1000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries

        self._cache: Dict[str, CachedIdentity] = {}
        self._by_feeder: Dict[str, str] = {}
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0

    def get(self, lookup: str) -> Optional[CachedIdentity]:
        """
        Get a cached identity by lookup digest.

        Returns None if not cached or expired.
        """
        with self._lock:
            entry = self._cache.get(lookup)
            if entry is not None:
                age = time.time() - entry.cached_at
                if age < self.ttl_seconds:
                    self._hits += 1
                    return entry
                # Expired
                self._remove(lookup)

            self._misses += 1
            return None

    def put(self, lookup: str, identity: CachedIdentity) -> None:
        if self.ttl_seconds <= 0:
            return

        with self._lock:
            previous = self._by_feeder.get(identity.feeder_id)
            if previous is not None and previous != lookup:
                self._remove(previous)

            self._cache[lookup] = identity
            self._by_feeder[identity.feeder_id] = lookup

            # Evict if over capacity
            if len(self._cache) > self.max_entries:
                self._evict_oldest()

    def _remove(self, lookup: str) -> None:
        entry = self._cache.pop(lookup, None)
        if entry is not None and self._by_feeder.get(entry.feeder_id) == lookup:
            del self._by_feeder[entry.feeder_id]

    def _evict_oldest(self) -> None:
        """Remove oldest entries when over capacity."""
        entries = sorted(self._cache.items(), key=lambda x: x[1].cached_at)
        # Remove oldest 10%
        to_remove = max(1, len(entries) // 10)
        for lookup, _ in entries[:to_remove]:
            self._remove(lookup)

    def invalidate_feeder(self, feeder_id: str) -> None:
        """Drop the cached identity of a feeder, e.g. after a status change."""
        with self._lock:
            lookup = self._by_feeder.get(feeder_id)
            if lookup is not None:
                self._remove(lookup)
                logger.debug(f'Invalidated cached credential for {feeder_id}')

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._by_feeder.clear()

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                'entries': len(self._cache),
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / total if total > 0 else 0,
            }
