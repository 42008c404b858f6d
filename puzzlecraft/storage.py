"""
Snapshot storage adapters for the context store.

An adapter only has to ``load()`` the last saved ``ProjectStore`` (or None)
and ``save()`` a new one. The context store wraps both calls and never lets
a storage failure reach its callers.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from puzzlecraft.core.errors import StorageError
from puzzlecraft.models.domain import ProjectStore

logger = logging.getLogger(__name__)


class StorageAdapter(Protocol):
    async def load(self) -> Optional[ProjectStore]: ...

    async def save(self, snapshot: ProjectStore) -> None: ...


class InMemoryStorageAdapter:
    """Keeps the last saved snapshot in process memory."""

    def __init__(self, initial: Optional[ProjectStore] = None) -> None:
        self._snapshot = initial.model_copy(deep=True) if initial else None
        self.save_count = 0

    async def load(self) -> Optional[ProjectStore]:
        return self._snapshot.model_copy(deep=True) if self._snapshot else None

    async def save(self, snapshot: ProjectStore) -> None:
        self._snapshot = snapshot.model_copy(deep=True)
        self.save_count += 1


class JsonFileStorageAdapter:
    """
    Stores the snapshot as camelCase JSON in a single file.

    Writes go to a sibling temp file first and are moved into place, so a
    crash mid-write leaves the previous snapshot intact. A missing or
    unreadable file loads as None.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> Optional[ProjectStore]:
        return await asyncio.to_thread(self._read)

    async def save(self, snapshot: ProjectStore) -> None:
        data = snapshot.model_dump_json(by_alias=True, indent=2)
        await asyncio.to_thread(self._write, data)

    def _read(self) -> Optional[ProjectStore]:
        if not self.path.exists():
            return None
        try:
            return ProjectStore.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"⚠️ Ignoring unreadable snapshot {self.path}: {e}")
            return None

    def _write(self, data: str) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(data, encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Could not write snapshot to {self.path}: {e}") from e


def get_storage_adapter(storage_path: Optional[str]) -> StorageAdapter:
    """File adapter when a path is configured, otherwise in-memory."""
    if storage_path:
        return JsonFileStorageAdapter(storage_path)
    return InMemoryStorageAdapter()
