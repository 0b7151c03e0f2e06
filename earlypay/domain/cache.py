"""Bounded, time-expiring cache handed to callers as an explicit capability"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    Least-recently-used cache whose entries expire after `ttl_seconds`.

    Owned by whoever constructs it; nothing in the engine keeps a
    process-wide instance.
    """

    def __init__(self, max_entries: int, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()
        self._lock = threading.Lock()

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[0] > now:
                self._entries.move_to_end(key)
                return entry[1]

        # Load outside the lock; a concurrent load of the same key just overwrites
        value = loader()
        with self._lock:
            self._entries[key] = (now + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
