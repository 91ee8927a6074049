"""In-process keyed locks.

Serializes work per upload session and per asset group inside one process.
Cross-process safety comes from row locks and unique constraints in the
database; these locks only keep threads of the same worker from racing each
other into those constraints.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator

log = logging.getLogger(__name__)


class KeyedLock:
    """A family of mutexes indexed by key, dropped once nobody holds them."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                remaining = self._waiters[key] - 1
                if remaining:
                    self._waiters[key] = remaining
                else:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Lock ordering: a session lock may be held while taking a group lock, never the reverse.
session_locks = KeyedLock("upload-session")
group_locks = KeyedLock("asset-group")
