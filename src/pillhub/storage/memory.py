"""
In-memory collaborator implementations.

Used for local development and as test doubles for the real backends.
"""

import copy
from typing import Any, Dict, List, Optional

from pillhub.storage.base import DocumentStore, KeyValueStorage, RealtimeStore


def split_path(path: str) -> List[str]:
    return [part for part in path.strip("/").split("/") if part]


class MemoryDocumentStore(DocumentStore):
    """Document store backed by nested dicts."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = copy.deepcopy(initial or {})

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def merge_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Upsert top-level fields. A map value replaces the stored map, as with an update mask."""
        docs = self._collections.setdefault(collection, {})
        docs.setdefault(doc_id, {}).update(copy.deepcopy(data))

    def snapshot(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Return a copy of every stored document."""
        return copy.deepcopy(self._collections)


class MemoryRealtimeStore(RealtimeStore):
    """Key-path store backed by a nested dict tree."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._root: Dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, path: str) -> Optional[Any]:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    async def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            self._root = copy.deepcopy(value) if isinstance(value, dict) else {}
            return

        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child

        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)


class MemoryKeyValueStorage(KeyValueStorage):
    """Key-value storage that lives only as long as the process."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def get_all_keys(self) -> List[str]:
        return list(self._items.keys())
