"""Per-key locking for filesystem writes in the package directory."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """Hands out one reentrant lock per key.

    Writes that concern the same package (downloading an artifact,
    retiring its older versions) hold the lock for the package's base
    name, so two workers never race on the same file.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
        with lock:
            yield
