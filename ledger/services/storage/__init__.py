"""Storage services package."""

from ledger.services.storage.interface import (
    CacheError,
    CacheInterface,
    RemoteStoreInterface,
    RemoteUnavailableError,
    SnapshotCallback,
    StorageError,
    Unsubscribe,
)
from ledger.services.storage.json_cache import JsonFileCache
from ledger.services.storage.memory import InMemoryCache, InMemoryRemoteStore

__all__ = [
    # Interfaces
    "CacheInterface",
    "RemoteStoreInterface",
    "SnapshotCallback",
    "Unsubscribe",
    # Implementations
    "InMemoryCache",
    "InMemoryRemoteStore",
    "JsonFileCache",
    # Exceptions
    "CacheError",
    "RemoteUnavailableError",
    "StorageError",
]
