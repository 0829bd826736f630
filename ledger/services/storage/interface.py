"""
Abstract Storage Interfaces

DESIGN DECISION: The ledger core talks to two stores through abstract
interfaces:
1. A persistent local cache (key/value, survives restarts, works offline)
2. A remote store (path/value, push snapshots to subscribers)

This allows us to:
1. Swap the remote backend without touching merge or queue logic
2. Use in-memory implementations for testing
3. Keep business logic decoupled from storage implementation

Both are asynchronous. Values are JSON-compatible (lists, dicts, strings,
numbers, booleans, None).
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable


SnapshotCallback = Callable[[Any], Awaitable[None]]
Unsubscribe = Callable[[], None]


class CacheInterface(ABC):
    """
    Abstract interface for the persistent local cache.

    The cache is always available; it is the ledger's offline source of
    truth between sessions.
    """

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """
        Read a value.

        Args:
            key: Cache key
            default: Returned when the key is absent

        Returns:
            The stored value or default
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """
        Store a value, replacing any previous one.

        Raises:
            CacheError: If the value cannot be stored
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key if present."""
        pass


class RemoteStoreInterface(ABC):
    """
    Abstract interface for the shared remote store.

    Any backend (a realtime database, a REST service, etc.) must implement
    these methods.
    """

    @abstractmethod
    async def subscribe(self, path: str, callback: SnapshotCallback) -> Unsubscribe:
        """
        Receive the value at `path` now and after every change.

        Args:
            path: Location of a collection
            callback: Awaited with each snapshot value

        Returns:
            A callable that stops delivery
        """
        pass

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        """
        Replace the value at `path`.

        Raises:
            RemoteUnavailableError: If the backend cannot be reached
            StorageError: If the write is rejected
        """
        pass

    @abstractmethod
    async def read(self, path: str) -> Any:
        """
        Read the value at `path` once (None when absent).

        Raises:
            RemoteUnavailableError: If the backend cannot be reached
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class CacheError(StorageError):
    """The local cache could not be read or written."""
    pass


class RemoteUnavailableError(StorageError):
    """Could not reach the remote store."""
    pass
