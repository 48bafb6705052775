"""
Process-local TTL cache used to avoid repeating expensive rerank calls.

Not shared between processes; a multi-instance deployment needs a shared
key-value server behind the same get/set contract.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    value: Any
    expires_at: int  # epoch milliseconds


class TTLCache:
    def __init__(self, max_entries: int = 1024, clock: Callable[[], int] = _now_ms):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._clock = clock
        self._store: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._store[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_ms: int) -> None:
        with self._lock:
            now = self._clock()
            if key not in self._store and len(self._store) >= self.max_entries:
                self._make_room(now)
            self._store[key] = CacheEntry(value=value, expires_at=now + ttl_ms)

    def _make_room(self, now: int) -> None:
        # Caller holds the lock
        expired = [k for k, e in self._store.items() if now > e.expires_at]
        for k in expired:
            del self._store[k]
        if len(self._store) >= self.max_entries:
            soonest = min(self._store, key=lambda k: self._store[k].expires_at)
            del self._store[soonest]

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
