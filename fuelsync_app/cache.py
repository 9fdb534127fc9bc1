"""In-process query cache with prefix invalidation."""

import logging
import threading
import time
from dataclasses import dataclass

_logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: object
    expires_at: float


class QueryCache:
    """Cache API reads under tuple keys such as ``("creditors", "st-1")``.

    Keys are matched element-wise for invalidation, so invalidating
    ``("creditors",)`` drops the creditor lists of every station.
    Expired entries are swept on every write.
    """

    def __init__(self, ttl=60.0, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def set(self, key, value):
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries[key] = CacheEntry(value=value, expires_at=now + self.ttl)

    def _purge_expired(self, now):
        # caller holds the lock
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def get_or_fetch(self, key, fetch):
        cached = self.get(key)
        if cached is not None:
            _logger.debug("[CACHE] hit %s", key)
            return cached
        _logger.debug("[CACHE] miss %s", key)
        value = fetch()
        self.set(key, value)
        return value

    def invalidate(self, prefix):
        """Drop every key starting with ``prefix``. Returns how many were dropped."""
        size = len(prefix)
        with self._lock:
            stale = [key for key in self._entries if key[:size] == prefix]
            for key in stale:
                del self._entries[key]
        if stale:
            _logger.debug("[CACHE] invalidated %d entries for %s", len(stale), prefix)
        return len(stale)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)
