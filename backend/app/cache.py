"""
In-process TTL caches.

Caches are plain objects handed to the components that use them (tool catalog,
geocoder) rather than module globals, so tests can build their own instance and
drive expiry with a fake clock.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

Clock = Callable[[], float]


class CacheEntry:
    __slots__ = ("value", "expiry", "hits")

    def __init__(self, value: Any, expiry: float) -> None:
        self.value = value
        self.expiry = expiry
        self.hits = 0

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expiry

    def increment_hits(self) -> None:
        self.hits += 1


class TTLCache:
    """
    Bounded key/value cache with per-entry expiry and LRU eviction.

    Concurrent writers race harmlessly: the last `set` wins, and a lost race
    costs one redundant upstream call.
    """

    def __init__(
        self,
        name: str,
        max_size: int = 256,
        default_ttl: float = 300.0,
        enabled: bool = True,
        clock: Clock | None = None,
    ) -> None:
        self.name = name
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.enabled = enabled
        self._clock = clock or time.time
        self._data: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def get(self, key: str, default: Any = None) -> Any:
        if not self.enabled:
            return default
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return default
            if entry.is_expired(self._clock()):
                del self._data[key]
                self.expirations += 1
                self.misses += 1
                return default
            entry.increment_hits()
            self._data.move_to_end(key)
            self.hits += 1
            return entry.value

    def contains(self, key: str) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            entry = self._data.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        if not self.enabled:
            return
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._data[key] = CacheEntry(value, self._clock() + lifetime)
            self._data.move_to_end(key)
            while len(self._data) > self.max_size:
                self._data.popitem(last=False)
                self.evictions += 1

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": len(self._data),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
        }


def make_cache_key(*args: Any, **kwargs: Any) -> str:
    """Stable digest of positional and keyword arguments."""
    payload = json.dumps([args, kwargs], sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


__all__ = ["CacheEntry", "TTLCache", "make_cache_key"]
