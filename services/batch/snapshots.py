"""
Batch snapshot persistence.

After every job state change the scheduler writes a snapshot of the whole
batch. Snapshots are for inspection and resume; the scheduler never reads
them back while running.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiofiles

from .models import BatchJob

logger = logging.getLogger(__name__)


class SnapshotStore(ABC):
    @abstractmethod
    async def save(self, batch_id: str, jobs: list[BatchJob]) -> None:
        ...

    @abstractmethod
    async def load(self, batch_id: str) -> Optional[list[dict]]:
        ...


class MemorySnapshotStore(SnapshotStore):
    """Keeps every snapshot, newest last."""

    def __init__(self):
        self.history: dict[str, list[list[dict]]] = {}

    async def save(self, batch_id: str, jobs: list[BatchJob]) -> None:
        self.history.setdefault(batch_id, []).append([job.to_snapshot() for job in jobs])

    async def load(self, batch_id: str) -> Optional[list[dict]]:
        snapshots = self.history.get(batch_id)
        return snapshots[-1] if snapshots else None


class JsonSnapshotStore(SnapshotStore):
    """One ``<batch_id>.json`` file per batch."""

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def _path(self, batch_id: str) -> Path:
        return self.directory / f"{batch_id}.json"

    async def save(self, batch_id: str, jobs: list[BatchJob]) -> None:
        document = {
            "batch_id": batch_id,
            "saved_at": datetime.utcnow().isoformat(),
            "jobs": [job.to_snapshot() for job in jobs],
        }
        async with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self._path(batch_id)
            tmp_path = path.with_suffix(".json.tmp")
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2, ensure_ascii=False))
            tmp_path.replace(path)

    async def load(self, batch_id: str) -> Optional[list[dict]]:
        path = self._path(batch_id)
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            document = json.loads(await f.read())
        return document.get("jobs", [])
