"""
JSON File Cache

Persistent cache backed by a single JSON document on disk.

TRADEOFFS:
- The whole document is rewritten on every set (fine for one person's
  ledger, not for large datasets)
- Writes go through a temp file and a rename, so a crash never leaves a
  half-written cache behind
"""

import asyncio
import copy
import json
import os
from pathlib import Path
from typing import Any, Union

from ledger.services.storage.interface import CacheError, CacheInterface


class JsonFileCache(CacheInterface):
    """Key/value cache persisted as one JSON object."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._data = self._load()

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise CacheError(f"Cannot read cache {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise CacheError(f"Cache {self._path} does not hold an object")
        return data

    def _write(self, snapshot: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(snapshot, fh, ensure_ascii=False, indent=2, sort_keys=True)
        os.replace(tmp, self._path)

    async def _persist(self) -> None:
        snapshot = copy.deepcopy(self._data)
        try:
            await asyncio.to_thread(self._write, snapshot)
        except (OSError, TypeError, ValueError) as e:
            raise CacheError(f"Cannot write cache {self._path}: {e}") from e

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._data[key] = copy.deepcopy(value)
            await self._persist()

    async def delete(self, key: str) -> None:
        async with self._lock:
            if self._data.pop(key, None) is not None:
                await self._persist()
