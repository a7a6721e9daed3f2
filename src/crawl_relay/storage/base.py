from __future__ import annotations
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class StorageBackend(ABC):
    """Storage abstraction for durable crawl state (checksum snapshots, committer output)."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        raise NotImplementedError()

    @abstractmethod
    def read_file(self, path: str) -> bytes:
        raise NotImplementedError()

    @abstractmethod
    def write_file(self, path: str, data: bytes) -> None:
        """Replace `path` with `data`. Readers never observe a partial file."""
        raise NotImplementedError()

    @abstractmethod
    def append_file(self, path: str, data: bytes) -> None:
        raise NotImplementedError()


class LocalStorageBackend(StorageBackend):
    """Filesystem-backed storage backend."""

    def __init__(self, fsync: bool = True):
        self.fsync = fsync

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def read_file(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def write_file(self, path: str, data: bytes) -> None:
        dirpath = os.path.dirname(path)
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)
        tmp = path + ".tmp"
        with open(tmp, "wb") as f:
            f.write(data)
            if self.fsync:
                f.flush()
                os.fsync(f.fileno())
        os.replace(tmp, path)

    def append_file(self, path: str, data: bytes) -> None:
        dirpath = os.path.dirname(path)
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)
        with open(path, "ab") as f:
            f.write(data)
            if self.fsync:
                f.flush()
                os.fsync(f.fileno())


def get_storage_backend(storage_config: Optional[Dict[str, Any]]) -> StorageBackend:
    """Create a storage backend from configuration."""
    if not storage_config:
        return LocalStorageBackend()
    storage_type = storage_config.get("type", "local").lower()
    if storage_type == "local":
        return LocalStorageBackend(fsync=bool(storage_config.get("fsync", True)))
    from ..errors import ConfigurationError
    raise ConfigurationError(f"Unknown storage type: {storage_type}")
