"""Fee quote cache port and an in-memory adapter with an injectable clock."""

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable


class FeeCache(ABC):
    """Abstract key/value cache with per-entry TTL."""

    @abstractmethod
    def get(self, key: str) -> float | None:
        """Return the cached value, or None if missing or expired."""
        ...

    @abstractmethod
    def set(self, key: str, value: float, ttl: int) -> None:
        """Store ``value`` for ``ttl`` seconds."""
        ...


class InMemoryFeeCache(FeeCache):
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, float]] = {}

    def get(self, key: str) -> float | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: float, ttl: int) -> None:
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
