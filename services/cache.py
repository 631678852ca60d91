import threading
import time
from typing import Any, Callable

DEFAULT_MAX_ENTRIES = 500


def make_key(*parts: Any) -> str:
    return "|".join(str(p) for p in parts)


class CostCache:
    """In-memory TTL cache in front of paid Google Maps calls.

    Entries older than ``ttl_seconds`` are treated as absent. Once the cache
    grows past ``max_entries`` a single sweep drops the expired entries; live
    entries are never flushed.
    """

    def __init__(self, ttl_seconds: float, max_entries: int = DEFAULT_MAX_ENTRIES, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, inserted_at = entry
            if self._clock() - inserted_at > self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = (value, now)
            if len(self._entries) > self.max_entries:
                cutoff = now - self.ttl_seconds
                for k in [k for k, (_, ts) in self._entries.items() if ts < cutoff]:
                    del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
