"""
Device-scoped key-value substrate.

The snapshot store and the offline queue persist everything as string
values under a handful of keys. Two implementations are provided:

- MemoryKeyValueStore: in-process dict, optional byte capacity
- FileKeyValueStore: one file per key, atomic writes using temp file + rename
"""

from __future__ import annotations

import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles
import aiofiles.os

from ..exceptions import QuotaExceededError, StorageIOError, ValidationError

_SAFE_KEY = re.compile(r"[^A-Za-z0-9._-]")


class KeyValueStore(ABC):
    """Abstract interface for the local key-value substrate."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key`` or None."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        Raises:
            QuotaExceededError: If the store has no room for the value
        """
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        """List stored keys."""
        ...


class MemoryKeyValueStore(KeyValueStore):
    """In-memory key-value store.

    ``capacity_bytes`` bounds the total size of all values, mimicking the
    quota of a browser-style local storage.
    """

    def __init__(self, capacity_bytes: int | None = None) -> None:
        self.capacity_bytes = capacity_bytes
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.capacity_bytes is not None:
            used = sum(len(v.encode("utf-8")) for k, v in self._data.items() if k != key)
            size = len(value.encode("utf-8"))
            if used + size > self.capacity_bytes:
                raise QuotaExceededError(key, used + size, self.capacity_bytes)
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data.keys())


class FileKeyValueStore(KeyValueStore):
    """File-backed key-value store.

    Each key is stored as ``{base_path}/{key}.json``. Writes go to a temp
    file that is fsynced and renamed over the target, so a crash never
    leaves a half-written value behind.
    """

    def __init__(self, base_path: Path | str | None = None, capacity_bytes: int | None = None):
        """Initialize file storage.

        Args:
            base_path: Directory for stored values. Defaults to ~/.collection-sync
            capacity_bytes: Optional total size limit across all keys
        """
        self.base_path = Path(base_path) if base_path else Path.home() / ".collection-sync"
        self.capacity_bytes = capacity_bytes

    def _path(self, key: str) -> Path:
        return self.base_path / f"{_SAFE_KEY.sub('_', key)}.json"

    async def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            if not await aiofiles.os.path.exists(path):
                return None
            async with aiofiles.open(path, encoding="utf-8") as f:
                return await f.read()
        except UnicodeDecodeError as e:
            raise ValidationError(key, f"stored value is not UTF-8 ({e.reason})") from e
        except OSError as e:
            raise StorageIOError("read_value", str(path), e) from e

    async def set(self, key: str, value: str) -> None:
        path = self._path(key)
        await self._ensure_directory()

        if self.capacity_bytes is not None:
            size = len(value.encode("utf-8"))
            used = await self._used_bytes(exclude=path)
            if used + size > self.capacity_bytes:
                raise QuotaExceededError(key, used + size, self.capacity_bytes)

        fd, temp_path = tempfile.mkstemp(dir=self.base_path, prefix=".tmp_", suffix=".json")
        try:
            os.close(fd)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(value)
                await f.flush()
                os.fsync(f.fileno())

            await aiofiles.os.rename(temp_path, path)
        except Exception as e:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            if isinstance(e, OSError) and e.errno == 28:  # ENOSPC
                raise QuotaExceededError(key) from e
            raise StorageIOError("write_value", str(path), e) from e

    async def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageIOError("remove_value", str(path), e) from e

    async def keys(self) -> list[str]:
        if not await aiofiles.os.path.exists(self.base_path):
            return []
        names = await aiofiles.os.listdir(self.base_path)
        return sorted(n[: -len(".json")] for n in names if n.endswith(".json") and not n.startswith("."))

    async def _ensure_directory(self) -> None:
        try:
            await aiofiles.os.makedirs(self.base_path, exist_ok=True)
        except OSError as e:
            raise StorageIOError("create_directory", str(self.base_path), e) from e

    async def _used_bytes(self, exclude: Path) -> int:
        total = 0
        for name in await aiofiles.os.listdir(self.base_path):
            path = self.base_path / name
            if path == exclude or name.startswith("."):
                continue
            total += (await aiofiles.os.stat(path)).st_size
        return total
