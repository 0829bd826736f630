"""External collaborators: storage and time."""

from ledger.services.clock import Clock, FixedClock, SystemClock
from ledger.services.storage import (
    CacheError,
    CacheInterface,
    InMemoryCache,
    InMemoryRemoteStore,
    JsonFileCache,
    RemoteStoreInterface,
    RemoteUnavailableError,
    StorageError,
)

__all__ = [
    "CacheError",
    "CacheInterface",
    "Clock",
    "FixedClock",
    "InMemoryCache",
    "InMemoryRemoteStore",
    "JsonFileCache",
    "RemoteStoreInterface",
    "RemoteUnavailableError",
    "StorageError",
    "SystemClock",
]
