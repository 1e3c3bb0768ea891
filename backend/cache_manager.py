"""
In-process TTL cache for recomputable values.
Holds identity-provider key sets and loaded private keys. Instances are
injected into their users, so each identity configuration gets its own
cache and tests can build a fresh one.
"""

import logging
import threading
import time
from typing import Any, Callable, Hashable, Optional

import cachetools

logger = logging.getLogger(__name__)

# Default TTL (15 minutes = 900 seconds)
DEFAULT_TTL = 900


class TTLCache:
    """Bounded mapping whose entries expire ``ttl_seconds`` after insert.

    Storage is a ``cachetools.TTLCache`` (LRU eviction once ``max_entries``
    is reached) guarded by a lock, since verifiers are shared across
    request threads.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL,
        max_entries: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive: {ttl_seconds}")
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive: {max_entries}")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries = cachetools.TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=clock)
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """
        Get cached value by key.
        Returns None if key not found or expired.
        """
        with self._lock:
            value = self._entries.get(key)
        if value is None:
            logger.debug(f"Cache MISS: {key}")
        return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def get_or_create(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        """Return the cached value, building and storing it on a miss."""
        value = self.get(key)
        if value is not None:
            return value
        value = factory()
        self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)
