"""Per-key mutual exclusion for read-modify-write sections."""

from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Iterator


class KeyedLock:
    """Hands out one lock per key; unrelated keys never block each other."""

    def __init__(self):
        self._locks = defaultdict(threading.Lock)
        self._lock = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._lock:
            lock = self._locks[key]
        with lock:
            yield

    def __len__(self) -> int:
        with self._lock:
            return len(self._locks)
