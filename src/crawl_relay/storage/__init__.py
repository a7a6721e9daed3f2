"""Storage abstraction layer."""

from .base import StorageBackend, LocalStorageBackend, get_storage_backend

__all__ = [
    "StorageBackend",
    "LocalStorageBackend",
    "get_storage_backend",
]
