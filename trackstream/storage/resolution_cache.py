"""
In-memory TTL cache for catalog id -> source identifier resolutions.

Search results drift over time, so entries expire; failed resolutions are
never stored.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Generic, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class ResolutionCache(Generic[T]):
    """A bounded mapping whose entries expire ttl_seconds after being set."""

    def __init__(
        self,
        ttl_seconds: float = 3600,
        maxsize: int = 2048,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.maxsize = maxsize
        self._clock = clock
        self._data: OrderedDict[str, tuple[float, T]] = OrderedDict()

    def get(self, key: str) -> Optional[T]:
        """Returns the value for key, or None if it is missing or expired."""
        item = self._data.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= self._clock():
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: str, value: T) -> None:
        if self.ttl_seconds <= 0:
            return
        self._data[key] = (self._clock() + self.ttl_seconds, value)
        self._data.move_to_end(key)
        while len(self._data) > self.maxsize:
            evicted, _ = self._data.popitem(last=False)
            log.debug(f"Resolution cache full, dropped '{evicted}'.")

    def invalidate(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
