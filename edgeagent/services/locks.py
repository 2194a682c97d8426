"""Per-entity locks: one publish/validate/reload cycle per entity name at a time"""

import threading
from contextlib import contextmanager
from typing import Iterator


class NameLocks:
    """Lazily created lock per key; different keys never block each other"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()
