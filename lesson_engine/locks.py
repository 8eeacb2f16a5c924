from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class ClassLockRegistry:
    """In-memory registry handing out one re-entrant lock per class id.

    Only serializes work inside a single process.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._lock = threading.Lock()

    def lock_for(self, class_id: str) -> threading.RLock:
        with self._lock:
            lock = self._locks.get(class_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[class_id] = lock
            return lock

    @contextmanager
    def hold(self, class_id: str) -> Iterator[None]:
        lock = self.lock_for(class_id)
        with lock:
            yield

    def known_classes(self) -> list[str]:
        with self._lock:
            return sorted(self._locks)


class_locks = ClassLockRegistry()
