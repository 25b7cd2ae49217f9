"""
Storage collaborators for PillHub.

Provides the interfaces the provisioning core depends on plus
in-memory, file-backed and Firebase REST implementations.
"""

from pillhub.storage.base import (
    RETRYABLE_TRANSPORT_CODES,
    DocumentStore,
    KeyValueStorage,
    RealtimeStore,
    SessionProvider,
    StaticSessionProvider,
    TransportError,
)
from pillhub.storage.local import JsonFileStorage
from pillhub.storage.memory import (
    MemoryDocumentStore,
    MemoryKeyValueStorage,
    MemoryRealtimeStore,
)

__all__ = [
    "RETRYABLE_TRANSPORT_CODES",
    "DocumentStore",
    "KeyValueStorage",
    "RealtimeStore",
    "SessionProvider",
    "StaticSessionProvider",
    "TransportError",
    "JsonFileStorage",
    "MemoryDocumentStore",
    "MemoryKeyValueStorage",
    "MemoryRealtimeStore",
]
