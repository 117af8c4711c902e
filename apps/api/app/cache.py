"""In-process cache with a time-to-live per entry."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    payload: Any
    captured_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.captured_at < self.ttl


class TimeBoundedCache:
    """Key/value store where each entry expires ``ttl`` seconds after it was written.

    Stale entries stay in place until ``sweep`` removes them; ``get`` only
    reports them as a miss. The lock guards the dict itself, not any sequence
    of calls, so concurrent writers to one key resolve as last write wins.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the fresh payload for ``key``, else ``default``.

        Callers that cache ``None`` pass their own sentinel as ``default``.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(now):
            logger.debug("cache miss", extra={"cache_key": key})
            return default
        logger.debug("cache hit", extra={"cache_key": key})
        return entry.payload

    def set(self, key: str, payload: Any, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        entry = CacheEntry(payload=payload, captured_at=self._clock(), ttl=ttl)
        with self._lock:
            self._entries[key] = entry

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("cache sweep", extra={"removed": len(expired)})
        return len(expired)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
