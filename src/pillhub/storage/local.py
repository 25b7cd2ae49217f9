"""
File-backed key-value storage.

Persists every key in a single JSON document so wizard progress and
validation caches survive a process restart.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from pillhub.storage.base import KeyValueStorage

logger = logging.getLogger(__name__)


class JsonFileStorage(KeyValueStorage):
    """
    Key-value storage persisted to a JSON file.

    Writes go through a temporary file and an atomic rename so a crash
    mid-write never leaves a truncated store behind.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._items: Optional[Dict[str, str]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, str]:
        if self._items is not None:
            return self._items

        if not self._path.exists():
            self._items = {}
            return self._items

        try:
            with open(self._path, "r") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("storage root is not an object")
            self._items = {str(k): str(v) for k, v in data.items()}
        except (OSError, ValueError) as e:
            logger.error(f"Unreadable storage file {self._path}, starting empty: {e}")
            self._items = {}

        return self._items

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=str(self._path.parent), prefix=".storage-")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self._items, f)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._load().get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            self._load()[key] = value
            self._flush()

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            items = self._load()
            if key in items:
                del items[key]
                self._flush()

    async def multi_remove(self, keys: List[str]) -> None:
        async with self._lock:
            items = self._load()
            removed = [key for key in keys if items.pop(key, None) is not None]
            if removed:
                self._flush()

    async def get_all_keys(self) -> List[str]:
        async with self._lock:
            return list(self._load().keys())
