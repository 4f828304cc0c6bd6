"""
Per-key mutual exclusion.

Used to serialize check-then-commit sequences for a single owner (quota
accounting, folder path rewrites) without blocking unrelated owners.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLock:
    """
    Lazily created re-entrant lock per key.

    Re-entrant so a thread already holding an owner's lock can call into
    another component that takes the same lock. A key's lock is dropped once
    nobody holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._users: Dict[str, int] = {}

    def _acquire_ref(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _release_ref(self, key: str) -> None:
        with self._guard:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._acquire_ref(key)
        try:
            with lock:
                yield
        finally:
            self._release_ref(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
