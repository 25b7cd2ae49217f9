"""
TTL cache for validation results.

Entries live in memory and in local key-value storage so a validated
device id survives an app restart within its TTL.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from pillhub.storage.base import KeyValueStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_MS = 5 * 60 * 1000


@dataclass
class ValidationCacheEntry(Generic[T]):
    """Cached value with its write time and expiry (epoch ms)."""
    data: T
    timestamp: int
    expires_at: int

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "timestamp": self.timestamp,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationCacheEntry":
        return cls(
            data=data["data"],
            timestamp=int(data["timestamp"]),
            expires_at=int(data["expiresAt"]),
        )


class ValidationCache(Generic[T]):
    """
    Two-layer TTL cache keyed by string.

    Reads check memory first and then persisted storage; a persisted hit is
    promoted to memory. Expired entries are removed when read. Storage
    failures are logged and treated as a miss, never raised.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Callable[[], int],
        prefix: str = "@onboarding_device_validation_",
        ttl_ms: int = DEFAULT_TTL_MS,
    ):
        self._storage = storage
        self._clock = clock
        self._prefix = prefix
        self._ttl_ms = ttl_ms
        self._memory: Dict[str, ValidationCacheEntry] = {}

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def _storage_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[T]:
        """Return the cached value, or None on a miss or expiry."""
        now = self._clock()

        entry = self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                return entry.data
            del self._memory[key]

        try:
            raw = await self._storage.get_item(self._storage_key(key))
        except Exception as e:
            logger.warning(f"Cache read failed for {key[:8]}...: {e}")
            return None

        if raw is None:
            return None

        try:
            entry = ValidationCacheEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding corrupt cache entry for {key[:8]}...: {e}")
            await self._remove_persisted(key)
            return None

        if entry.is_expired(now):
            await self._remove_persisted(key)
            return None

        self._memory[key] = entry
        return entry.data

    async def set(self, key: str, data: T, ttl_ms: Optional[int] = None) -> None:
        """Store a value in both layers. Persisted write failures are only logged."""
        now = self._clock()
        entry = ValidationCacheEntry(
            data=data,
            timestamp=now,
            expires_at=now + (self._ttl_ms if ttl_ms is None else ttl_ms),
        )
        self._memory[key] = entry

        try:
            await self._storage.set_item(self._storage_key(key), json.dumps(entry.to_dict()))
        except Exception as e:
            logger.warning(f"Cache write failed for {key[:8]}...: {e}")

    async def invalidate(self, key: str) -> None:
        """Drop a single key from both layers."""
        self._memory.pop(key, None)
        await self._remove_persisted(key)

    async def clear_all(self) -> None:
        """Drop every entry under this cache's prefix."""
        self._memory.clear()
        try:
            keys = await self._storage.get_all_keys()
            cache_keys = [key for key in keys if key.startswith(self._prefix)]
            if cache_keys:
                await self._storage.multi_remove(cache_keys)
            logger.debug(f"Cleared {len(cache_keys)} cached validation entries")
        except Exception as e:
            logger.warning(f"Cache clear failed: {e}")

    async def _remove_persisted(self, key: str) -> None:
        try:
            await self._storage.remove_item(self._storage_key(key))
        except Exception as e:
            logger.warning(f"Cache remove failed for {key[:8]}...: {e}")
