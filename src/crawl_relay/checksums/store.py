"""Checksum store.

Purpose:
- remember the last committed signature of every reference across crawl sessions
- answer "what did we send last time?" for change detection

Lifecycle: open() at session start, get/put/remove during the session,
flush() periodically, close() at session end. Writes for one reference are
serialized by the caller (one pipeline run per reference), so the store only
guards its own map with a lock.

File schema (JSON):
{
  "updated_at_ms": 123,
  "count": 2,
  "checksums": {"https://example.com/a": "9f86d0...", "https://example.com/b": "60303a..."}
}
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict, Optional
import json
import logging
import threading
import time

from ..errors import ConfigurationError
from ..storage.base import LocalStorageBackend, StorageBackend

log = logging.getLogger("crawl_relay.checksums.store")


class ChecksumStore(ABC):
    """Reference-keyed signature store. Last write wins."""

    def open(self) -> None:
        pass

    @abstractmethod
    def get(self, reference: str) -> Optional[str]:
        ...

    @abstractmethod
    def put(self, reference: str, signature: str) -> None:
        ...

    @abstractmethod
    def remove(self, reference: str) -> None:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.flush()

    @abstractmethod
    def clear(self) -> None:
        ...


class MemoryChecksumStore(ChecksumStore):
    """Non-persistent store; useful for tests and one-off crawls."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, reference: str) -> Optional[str]:
        with self._lock:
            return self._data.get(reference)

    def put(self, reference: str, signature: str) -> None:
        with self._lock:
            self._data[reference] = signature

    def remove(self, reference: str) -> None:
        with self._lock:
            self._data.pop(reference, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._data)


class FileChecksumStore(MemoryChecksumStore):
    """JSON snapshot store, written atomically through a StorageBackend."""

    def __init__(
        self,
        path: str,
        storage: Optional[StorageBackend] = None,
        flush_every: int = 1000,
    ):
        super().__init__()
        if flush_every < 1:
            raise ConfigurationError("checksum_store.flush_every must be >= 1")
        self.path = path
        self.storage = storage or LocalStorageBackend()
        self.flush_every = flush_every
        self._dirty = 0
        self._opened = False

    def open(self) -> None:
        with self._lock:
            self._data.clear()
            if self.storage.exists(self.path):
                raw = self.storage.read_file(self.path)
                try:
                    state = json.loads(raw.decode("utf-8"))
                except ValueError as e:
                    raise ConfigurationError(f"Corrupt checksum store {self.path}: {e}") from e
                self._data.update(state.get("checksums", {}))
            self._dirty = 0
            self._opened = True
        log.info("Checksum store opened: %s (%d entries)", self.path, len(self._data))

    def put(self, reference: str, signature: str) -> None:
        super().put(reference, signature)
        self._mark_dirty()

    def remove(self, reference: str) -> None:
        super().remove(reference)
        self._mark_dirty()

    def clear(self) -> None:
        super().clear()
        self._mark_dirty()
        self.flush()

    def _mark_dirty(self) -> None:
        with self._lock:
            self._dirty += 1
            due = self._dirty >= self.flush_every
        if due:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            if not self._dirty:
                return
            state = {
                "updated_at_ms": int(time.time() * 1000),
                "count": len(self._data),
                "checksums": dict(self._data),
            }
            # written under the lock so a concurrent put cannot be half-included
            payload = json.dumps(state, ensure_ascii=False).encode("utf-8")
            self.storage.write_file(self.path, payload)
            self._dirty = 0
        log.debug("Checksum store flushed: %s", self.path)

    def close(self) -> None:
        self.flush()
        self._opened = False
