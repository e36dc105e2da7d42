"""Key/value persistence used by the control loop.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

_LOGGER = logging.getLogger(__name__)

STORAGE_VERSION = 1


class KeyValueStore(Protocol):
    """Asynchronous key/value contract consumed by the control loop."""

    async def async_get(self, key: str) -> Any:
        ...

    async def async_set(self, key: str, value: Any) -> None:
        ...


class JsonKeyValueStorage:
    """Simple JSON file persistence for a flat key/value mapping."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._data: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        """Load persisted values from disk; unreadable files start empty."""
        if self._data is not None:
            return self._data
        self._data = {}
        if not self._path.exists():
            return self._data
        try:
            with self._path.open("r", encoding="utf-8") as file:
                payload = json.load(file)
        except (OSError, json.JSONDecodeError) as err:
            _LOGGER.warning("Could not read %s, starting fresh: %s", self._path, err)
            return self._data
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            self._data = payload["data"]
        return self._data

    def get(self, key: str) -> Any:
        return self.load().get(key)

    def set(self, key: str, value: Any) -> None:
        """Update one key and persist the whole mapping atomically."""
        data = self.load()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with temp_path.open("w", encoding="utf-8") as file:
            json.dump({"version": STORAGE_VERSION, "data": data}, file, ensure_ascii=True)
        temp_path.replace(self._path)


ExecutorJob = Callable[..., Awaitable[Any]]


class ExecutorKeyValueStore:
    """Runs a JsonKeyValueStorage in an executor so the event loop never blocks on disk.

    Calls are serialised: the wrapped storage shares one mapping and one
    temporary file between writes.
    """

    def __init__(self, storage: JsonKeyValueStorage, run_in_executor: ExecutorJob) -> None:
        self._storage = storage
        self._run = run_in_executor
        self._lock = asyncio.Lock()

    async def async_get(self, key: str) -> Any:
        async with self._lock:
            return await self._run(self._storage.get, key)

    async def async_set(self, key: str, value: Any) -> None:
        async with self._lock:
            await self._run(self._storage.set, key, value)
