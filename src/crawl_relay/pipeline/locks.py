"""Per-reference mutual exclusion.

Two workers must never run the pipeline for the same reference at the same
time. Locks are created on demand and dropped when their last holder leaves,
so memory stays proportional to in-flight references, not to the crawl size.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, List
import threading


class ReferenceLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # reference -> [lock, holders]

    @contextmanager
    def hold(self, reference: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(reference)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[reference] = entry
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[reference]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
