"""Injected in-process caches for idempotent compose responses."""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Optional, Protocol, Tuple, TypeVar

V = TypeVar("V")


class CompositionCache(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def invalidate(self, key: Optional[str] = None) -> None: ...


class InMemoryCache(Generic[V]):
    """LRU map with an optional time-to-live.

    Entries are stored as given and never copied, so callers must not mutate a
    cached value in place.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, V]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[V]:
        item = self._entries.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._ttl is not None and self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
