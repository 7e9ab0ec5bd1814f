"""Local read-through cache of server state, keyed by tuples.

Keys name the entity they hold, e.g. ``("post", post_id)``,
``("comments", post_id, page)``, ``("posts", page)``, ``("user", username)``,
``("me",)``, ``("notifications", page)`` and ``("unread_count",)``. Invalidation works on
key prefixes and only marks entries stale; the next ``fetch`` reloads them.
"""
from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

CacheKey = Tuple[Any, ...]


@dataclass
class CacheEntry:
    value: Any
    stale: bool = False
    updated_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class Snapshot:
    present: bool
    value: Any = None
    stale: bool = False


def post_key(post_id: str) -> CacheKey:
    return ("post", post_id)


def comments_key(post_id: str, page: int = 1) -> CacheKey:
    return ("comments", post_id, page)


def feed_key(page: int = 1) -> CacheKey:
    return ("posts", page)


def user_key(username: str) -> CacheKey:
    return ("user", username)


def notifications_key(page: int = 1) -> CacheKey:
    return ("notifications", page)


UNREAD_COUNT_KEY: CacheKey = ("unread_count",)
ME_KEY: CacheKey = ("me",)


class QueryCache:
    def __init__(self) -> None:
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.RLock()

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            return copy.deepcopy(entry.value) if entry else None

    def is_stale(self, key: CacheKey) -> bool:
        """Missing entries count as stale."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is None or entry.stale

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=copy.deepcopy(value))

    def update(self, key: CacheKey, fn: Callable[[Any], Any]) -> Optional[Any]:
        """Replace a cached value with ``fn(value)``; no-op when the key is not cached."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            new_value = fn(copy.deepcopy(entry.value))
            entry.value = new_value
            entry.updated_at = time.monotonic()
            return copy.deepcopy(new_value)

    def remove(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def snapshot(self, key: CacheKey) -> Snapshot:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return Snapshot(present=False)
            return Snapshot(present=True, value=copy.deepcopy(entry.value), stale=entry.stale)

    def restore(self, key: CacheKey, snap: Snapshot) -> None:
        with self._lock:
            if not snap.present:
                self._entries.pop(key, None)
                return
            self._entries[key] = CacheEntry(value=copy.deepcopy(snap.value), stale=snap.stale)

    def invalidate(self, prefix: CacheKey) -> int:
        """Mark every entry whose key starts with ``prefix`` stale; returns how many."""
        n = len(prefix)
        marked = 0
        with self._lock:
            for key, entry in self._entries.items():
                if key[:n] == prefix:
                    entry.stale = True
                    marked += 1
        return marked

    def keys(self) -> List[CacheKey]:
        with self._lock:
            return list(self._entries)

    def fetch(self, key: CacheKey, loader: Callable[[], Any]) -> Any:
        """Return the cached value, loading it first when missing or stale."""
        if not self.is_stale(key):
            return self.get(key)
        value = loader()
        self.set(key, value)
        return copy.deepcopy(value)
