"""
Collaborator interfaces for PillHub provisioning.

The provisioning core talks to four external collaborators:
a durable per-entity document store, a real-time key-path store,
a session/identity provider, and local persistent key-value storage.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


# Transport codes that indicate a transient backend condition
RETRYABLE_TRANSPORT_CODES = frozenset({
    "unavailable",
    "deadline-exceeded",
    "resource-exhausted",
    "aborted",
})


class TransportError(Exception):
    """
    Raw failure reported by a backend collaborator.

    Attributes:
        code: Transport code (e.g. 'unavailable', 'permission-denied')
        message: Backend-provided description
    """

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.message = message or code

    @property
    def is_retryable(self) -> bool:
        return self.code in RETRYABLE_TRANSPORT_CODES

    def __repr__(self) -> str:
        return f"TransportError(code={self.code!r}, message={self.message!r})"


class DocumentStore(ABC):
    """Durable per-entity document store with keyed reads and merge-upserts."""

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document, or None if it does not exist."""
        pass

    @abstractmethod
    async def merge_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Create the document or merge `data` into it. Absent fields are untouched."""
        pass


class RealtimeStore(ABC):
    """Low-latency key-path store shared with device firmware."""

    @abstractmethod
    async def get(self, path: str) -> Optional[Any]:
        """Return the value at `path`, or None if nothing is stored there."""
        pass

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Replace the value at `path`."""
        pass


class KeyValueStorage(ABC):
    """Local key-value storage that survives process restart."""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    async def get_all_keys(self) -> List[str]:
        pass

    async def multi_remove(self, keys: List[str]) -> None:
        """Remove several keys."""
        for key in keys:
            await self.remove_item(key)


class SessionProvider(ABC):
    """Identity provider exposing the signed-in user."""

    @abstractmethod
    def current_user_id(self) -> Optional[str]:
        """Return the active user id, or None when signed out."""
        pass


class StaticSessionProvider(SessionProvider):
    """Session provider with a fixed user, for headless runs and tests."""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None
