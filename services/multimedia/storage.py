"""
Key-value persistence for provider settings.

The configuration manager only needs four async operations, so any
backend implementing ``KeyValueStore`` will do. Values are JSON-safe
Python objects.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import aiofiles

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async key-value storage."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        ...


class InMemoryStore(KeyValueStore):
    """Process-local store, used by tests and one-off CLI runs."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]


class JsonFileStore(KeyValueStore):
    """
    All keys in a single JSON document on disk.

    The whole document is rewritten on every ``set``/``delete``. A missing
    or corrupt file reads as empty; the configuration manager treats that
    as "nothing configured".
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            raw = await f.read()
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Config store {self.path} is not valid JSON, ignoring: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    async def _write_all(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, ensure_ascii=False))
        tmp_path.replace(self.path)

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            return (await self._read_all()).get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await self._read_all()
            data[key] = value
            await self._write_all(data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await self._read_all()
            if key in data:
                del data[key]
                await self._write_all(data)

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._lock:
            return [k for k in await self._read_all() if k.startswith(prefix)]
