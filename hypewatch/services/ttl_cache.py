import time
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """
    Small keyed cache with a fixed time-to-live.

    Owned by whichever feed creates it. `clock` returns seconds and defaults
    to time.monotonic; tests pass a controllable one.
    """

    def __init__(self, ttl: float, clock: Optional[Callable[[], float]] = None):
        if ttl < 0:
            raise ValueError("ttl must be non-negative")
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: Dict[Any, Tuple[float, T]] = {}

    def get(self, key: Any = None) -> Optional[T]:
        """Fresh value for `key`, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl:
            return None
        return value

    def get_stale(self, key: Any = None) -> Optional[T]:
        """Last stored value regardless of age (fallback when upstream fails)."""
        entry = self._entries.get(key)
        return entry[1] if entry else None

    def stored_at(self, key: Any = None) -> Optional[float]:
        entry = self._entries.get(key)
        return entry[0] if entry else None

    def set(self, value: T, key: Any = None) -> T:
        self._entries[key] = (self._clock(), value)
        return value

    def invalidate(self, key: Any = None):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()
