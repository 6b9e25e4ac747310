"""Key-tracked TTL cache for rendered chapters and book statistics.

``MemoryStore`` is the storage primitive: it expires entries and reports every
eviction, but it cannot list its keys. ``ContentCache`` keeps its own key
tracker next to it, fed by ``set`` and by the store's eviction callback, which
is what makes counting, listing and prefix invalidation possible.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger("quire.cache")

T = TypeVar("T")

DEFAULT_ABSOLUTE_TTL = 30 * 60.0
DEFAULT_SLIDING_TTL = 10 * 60.0

EVICTED_EXPIRED = "expired"
EVICTED_REMOVED = "removed"
EVICTED_REPLACED = "replaced"


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: Optional[float]
    sliding_ttl: Optional[float] = None
    last_access: float = 0.0

    def is_expired(self, now: float) -> bool:
        if self.expires_at is not None and now >= self.expires_at:
            return True
        if self.sliding_ttl is not None and now - self.last_access >= self.sliding_ttl:
            return True
        return False


EvictionCallback = Callable[[str, Any, str], None]


class MemoryStore:
    """Thread-safe expiring dictionary without key enumeration."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, on_evicted: Optional[EvictionCallback] = None) -> None:
        self._clock = clock
        self._on_evicted = on_evicted
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _notify(self, evicted: list[tuple[str, Any, str]]) -> None:
        if self._on_evicted is None:
            return
        for key, value, reason in evicted:
            self._on_evicted(key, value, reason)

    def get(self, key: str) -> Any:
        evicted: list[tuple[str, Any, str]] = []
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                evicted.append((key, entry.value, EVICTED_EXPIRED))
                value = None
            else:
                entry.last_access = now
                value = entry.value
        self._notify(evicted)
        return value

    def set(self, key: str, value: Any, expires_at: Optional[float], sliding_ttl: Optional[float] = None) -> None:
        evicted: list[tuple[str, Any, str]] = []
        with self._lock:
            previous = self._entries.get(key)
            if previous is not None:
                evicted.append((key, previous.value, EVICTED_REPLACED))
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                expires_at=expires_at,
                sliding_ttl=sliding_ttl,
                last_access=self._clock(),
            )
        self._notify(evicted)

    def remove(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._notify([(key, entry.value, EVICTED_REMOVED)])
        return True

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def sweep(self) -> int:
        evicted: list[tuple[str, Any, str]] = []
        with self._lock:
            now = self._clock()
            for key, entry in list(self._entries.items()):
                if entry.is_expired(now):
                    del self._entries[key]
                    evicted.append((key, entry.value, EVICTED_EXPIRED))
        self._notify(evicted)
        return len(evicted)

    def now(self) -> float:
        return self._clock()


class ContentCache:
    def __init__(
        self,
        default_ttl: float = DEFAULT_ABSOLUTE_TTL,
        sliding_ttl: Optional[float] = DEFAULT_SLIDING_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self.sliding_ttl = sliding_ttl
        self._store = MemoryStore(clock=clock, on_evicted=self._on_evicted)
        self._keys: set[str] = set()
        # Reentrant: store callbacks fire while remove() holds it.
        self._keys_lock = threading.RLock()
        self._clear_lock = threading.Lock()
        self._key_locks: dict[str, tuple[threading.Lock, int]] = {}
        self._key_locks_guard = threading.Lock()

    def _on_evicted(self, key: str, value: Any, reason: str) -> None:
        if reason == EVICTED_REPLACED:
            return
        with self._keys_lock:
            # A writer may have stored the key again before this callback ran.
            if not self._store.contains(key):
                self._keys.discard(key)
        logger.debug("Cache entry %s evicted (%s)", key, reason)

    def get(self, key: Optional[str]) -> Any:
        if not key or not key.strip():
            return None
        value = self._store.get(key)
        logger.debug("Cache %s for %s", "hit" if value is not None else "miss", key)
        return value

    def set(self, key: Optional[str], value: Any, ttl: Optional[float] = None) -> None:
        if not key or not key.strip():
            return
        now = self._store.now()
        if ttl is None:
            expires_at = now + self.default_ttl if self.default_ttl else None
            sliding = self.sliding_ttl
        else:
            expires_at = now + ttl
            sliding = None
        # Store write and tracker update happen together under the tracker lock.
        with self._keys_lock:
            self._store.set(key, value, expires_at, sliding)
            self._keys.add(key)

    def remove(self, key: Optional[str]) -> None:
        if not key or not key.strip():
            return
        with self._keys_lock:
            self._store.remove(key)
            if not self._store.contains(key):
                self._keys.discard(key)

    def _snapshot_keys(self) -> list[str]:
        with self._keys_lock:
            return list(self._keys)

    def clear(self) -> None:
        with self._clear_lock:
            keys = self._snapshot_keys()
            for key in keys:
                self.remove(key)
        logger.info("Cache cleared (%d entries)", len(keys))

    def remove_by_prefix(self, prefix: Optional[str]) -> int:
        if not prefix or not prefix.strip():
            return 0
        needle = prefix.lower()
        with self._clear_lock:
            matches = [key for key in self._snapshot_keys() if key.lower().startswith(needle)]
            for key in matches:
                self.remove(key)
        logger.info("Removed %d cache entries with prefix %s", len(matches), prefix)
        return len(matches)

    def _acquire_key_lock(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock, users = self._key_locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._key_locks[key] = (lock, users + 1)
        lock.acquire()
        return lock

    def _release_key_lock(self, key: str, lock: threading.Lock) -> None:
        lock.release()
        with self._key_locks_guard:
            _, users = self._key_locks.get(key, (lock, 1))
            if users <= 1:
                self._key_locks.pop(key, None)
            else:
                self._key_locks[key] = (lock, users - 1)

    def get_or_create(self, key: Optional[str], factory: Callable[[], T], ttl: Optional[float] = None) -> T:
        """Return the cached value for ``key`` or build, store and return it.

        Concurrent callers missing on the same key wait on a per-key lock, so
        ``factory`` runs once. A failing factory caches nothing and its
        exception reaches every caller that ran it.
        """
        if not key or not key.strip():
            raise ValueError("Cache key must not be empty")
        cached = self.get(key)
        if cached is not None:
            return cached
        lock = self._acquire_key_lock(key)
        try:
            cached = self.get(key)
            if cached is not None:
                return cached
            value = factory()
            if value is not None:
                self.set(key, value, ttl)
            return value
        finally:
            self._release_key_lock(key, lock)

    def count(self) -> int:
        self._store.sweep()
        with self._keys_lock:
            return len(self._keys)

    def keys(self) -> list[str]:
        self._store.sweep()
        return sorted(self._snapshot_keys())
