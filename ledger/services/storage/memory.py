"""
In-Memory Storage

Cache and remote store kept in process memory. Used by tests and by
callers that want an ephemeral ledger.

The remote store behaves like a realtime backend:
- subscribers get the current value on subscribe and after every write
- while offline, writes fail and no snapshots are delivered
- going back online re-delivers the current value of every watched path

Values are deep-copied on the way in and out so callers never share
mutable state with the store.
"""

import copy
from typing import Any, Optional

from ledger.services.storage.interface import (
    CacheInterface,
    RemoteStoreInterface,
    RemoteUnavailableError,
    SnapshotCallback,
    StorageError,
    Unsubscribe,
)


class InMemoryCache(CacheInterface):
    """Dictionary-backed persistent cache."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def dump(self) -> dict[str, Any]:
        """Copy of everything stored (for inspection)."""
        return copy.deepcopy(self._data)


class InMemoryRemoteStore(RemoteStoreInterface):
    """Realtime-style remote store with connectivity and failure injection."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})
        self._subscribers: dict[str, list[SnapshotCallback]] = {}
        self._online = True
        self._failures_to_inject = 0
        self.write_count = 0

    @property
    def online(self) -> bool:
        return self._online

    def go_offline(self) -> None:
        self._online = False

    async def go_online(self) -> None:
        """Reconnect and re-deliver every watched path."""
        self._online = True
        for path in list(self._subscribers):
            if path in self._data:
                await self._notify(path)

    def fail_next_writes(self, count: int = 1) -> None:
        """Make the next `count` writes fail while staying online."""
        self._failures_to_inject = count

    async def subscribe(self, path: str, callback: SnapshotCallback) -> Unsubscribe:
        self._subscribers.setdefault(path, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(path, [])
            if callback in callbacks:
                callbacks.remove(callback)

        if self._online and path in self._data:
            await callback(copy.deepcopy(self._data[path]))
        return unsubscribe

    async def write(self, path: str, value: Any) -> None:
        if not self._online:
            raise RemoteUnavailableError(f"Offline: cannot write {path}")
        if self._failures_to_inject > 0:
            self._failures_to_inject -= 1
            raise StorageError(f"Write to {path} rejected")
        self._data[path] = copy.deepcopy(value)
        self.write_count += 1
        await self._notify(path)

    async def read(self, path: str) -> Any:
        if not self._online:
            raise RemoteUnavailableError(f"Offline: cannot read {path}")
        return copy.deepcopy(self._data.get(path))

    async def push_snapshot(self, path: str, value: Any) -> None:
        """
        Simulate a change made elsewhere (another device, the server).

        Stored even while offline; delivered when online.
        """
        self._data[path] = copy.deepcopy(value)
        if self._online:
            await self._notify(path)

    def peek(self, path: str) -> Any:
        """Current value regardless of connectivity (for inspection)."""
        return copy.deepcopy(self._data.get(path))

    async def _notify(self, path: str) -> None:
        for callback in list(self._subscribers.get(path, [])):
            await callback(copy.deepcopy(self._data[path]))
