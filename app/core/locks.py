"""In-process advisory locks keyed by business key (employeeId)."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLock:
    """One mutex per key, dropped again once nobody holds or waits for it.

    Only serializes callers inside this process; the directory remains the
    authority on conflicts across processes.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        if not self.enabled or not key:
            yield
            return

        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
