"""
TTL cache shared by the route finder and the arbitrage detector.

Entries are evicted lazily: an expired entry is dropped the first time it is
looked up after its TTL, and never returned. Route results live longer than
arbitrage results because opportunities decay as other traders act on them.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional

from .exceptions import ValidationError
from .interfaces import TimeProvider, get_time_provider
from .utils import get_logger

logger = get_logger(__name__)

DEFAULT_ROUTE_TTL = 30.0
DEFAULT_ARBITRAGE_TTL = 10.0
DEFAULT_MAX_ENTRIES = 1024


@dataclass
class CacheEntry:
    """A cached value and its bookkeeping."""

    key: Hashable
    value: Any
    created_at: float
    ttl: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl

    def remaining(self, now: float) -> float:
        return max(0.0, self.created_at + self.ttl - now)


class ResultCache:
    """
    Thread-safe key/value cache with per-entry TTL.

    Concurrent writers of the same key do not coordinate; the last write
    wins, which is fine because recomputing a result is idempotent.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_ROUTE_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        time_provider: Optional[TimeProvider] = None,
    ):
        if default_ttl <= 0:
            raise ValidationError(f"default_ttl must be positive: {default_ttl}")
        if max_entries < 1:
            raise ValidationError(f"max_entries must be at least 1: {max_entries}")

        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.time_provider = time_provider or get_time_provider()
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()

        self.hits = 0
        self.misses = 0
        self.expirations = 0
        self.evictions = 0

    def _now(self) -> float:
        return self.time_provider.current_timestamp()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the live value for ``key`` or None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.is_expired(self._now()):
                del self._entries[key]
                self.expirations += 1
                self.misses += 1
                logger.debug(f"Cache entry expired: {key}")
                return None
            self._entries.move_to_end(key)
            entry.access_count += 1
            self.hits += 1
            return entry.value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> CacheEntry:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValidationError(f"ttl must be positive: {ttl}")

        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self.purge_expired()
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Cache full, evicted least recently used entry: {evicted}")

            entry = CacheEntry(key=key, value=value, created_at=self._now(), ttl=ttl)
            self._entries[key] = entry
            return entry

    def entry(self, key: Hashable) -> Optional[CacheEntry]:
        """Raw entry for inspection, without counting an access."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._now()):
                return None
            return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry, returning how many were removed."""
        with self._lock:
            now = self._now()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self.expirations += len(expired)
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.entry(key) is not None

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / lookups if lookups else 0.0,
                "expirations": self.expirations,
                "evictions": self.evictions,
            }
