"""In-memory secret cache with per-entry TTL."""
import logging
import threading
import time
from typing import Callable, Dict, Optional

from .models import CacheEntry, CacheKey, SecretValue

logger = logging.getLogger(__name__)


class SecretCache:
    """
    Thread-safe store of resolved secret values.

    Reads never perform I/O. Entries are immutable and replaced wholesale,
    so a read racing a write sees either the old or the new entry.
    Expiry is left to the caller: compare ``entry.is_expired(cache.clock())``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, CacheEntry] = {}

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: CacheKey, value: SecretValue, ttl: Optional[float] = None) -> CacheEntry:
        """Store ``value`` under ``key``, replacing any existing entry."""
        entry = CacheEntry(value=value, fetched_at=self.clock(), ttl=ttl)
        with self._lock:
            self._entries[key] = entry
        return entry

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            removed = self._entries.pop(key, None)
        if removed is not None:
            logger.debug(f"Invalidated cached secret {key.secret_name} at {key.endpoint_key}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
