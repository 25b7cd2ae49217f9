"""
Tests for pillhub.storage.memory and pillhub.storage.base modules.
"""

import pytest

from pillhub.storage.base import StaticSessionProvider, TransportError
from pillhub.storage.memory import (
    MemoryDocumentStore,
    MemoryKeyValueStorage,
    MemoryRealtimeStore,
    split_path,
)


class TestTransportError:
    """Tests for TransportError."""

    @pytest.mark.parametrize("code", ["unavailable", "deadline-exceeded", "resource-exhausted", "aborted"])
    def test_retryable_codes(self, code):
        """Test transient codes are retryable."""
        assert TransportError(code).is_retryable is True

    @pytest.mark.parametrize("code", ["permission-denied", "not-found", "invalid-argument"])
    def test_non_retryable_codes(self, code):
        """Test other codes are not retryable."""
        assert TransportError(code).is_retryable is False

    def test_message_defaults_to_code(self):
        """Test message falls back to the code."""
        error = TransportError("unavailable")
        assert error.message == "unavailable"
        assert str(error) == "unavailable"


class TestStaticSessionProvider:
    """Tests for StaticSessionProvider."""

    def test_sign_in_out(self):
        """Test signing in and out."""
        session = StaticSessionProvider()
        assert session.current_user_id() is None
        session.sign_in("user-1")
        assert session.current_user_id() == "user-1"
        session.sign_out()
        assert session.current_user_id() is None


class TestHelpers:
    """Tests for path helpers."""

    def test_split_path(self):
        """Test path splitting ignores empty segments."""
        assert split_path("/devices//DEV-1/config/") == ["devices", "DEV-1", "config"]
        assert split_path("") == []


class TestMemoryDocumentStore:
    """Tests for MemoryDocumentStore."""

    @pytest.mark.asyncio
    async def test_missing_document(self):
        """Test reading a missing document returns None."""
        store = MemoryDocumentStore()
        assert await store.get_document("devices", "nope") is None

    @pytest.mark.asyncio
    async def test_merge_creates_and_preserves(self):
        """Test merge creates documents and keeps absent fields."""
        store = MemoryDocumentStore()
        await store.merge_document("deviceConfigs", "DEV-1", {"alarmMode": "both", "ledIntensity": 512})
        await store.merge_document("deviceConfigs", "DEV-1", {"alarmMode": "sound"})

        doc = await store.get_document("deviceConfigs", "DEV-1")
        assert doc == {"alarmMode": "sound", "ledIntensity": 512}

    @pytest.mark.asyncio
    async def test_merge_replaces_nested_maps(self):
        """Test a map field is replaced as a whole, like a Firestore update mask."""
        store = MemoryDocumentStore()
        await store.merge_document("deviceConfigs", "DEV-1", {"ledColor": {"r": 1, "g": 2, "b": 3, "w": 4}})
        await store.merge_document("deviceConfigs", "DEV-1", {"ledColor": {"r": 9, "g": 9, "b": 9}})

        doc = await store.get_document("deviceConfigs", "DEV-1")
        assert doc == {"ledColor": {"r": 9, "g": 9, "b": 9}}

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        """Test callers cannot mutate stored state."""
        store = MemoryDocumentStore({"devices": {"DEV-1": {"primaryPatientId": None}}})
        doc = await store.get_document("devices", "DEV-1")
        doc["primaryPatientId"] = "someone"
        assert (await store.get_document("devices", "DEV-1"))["primaryPatientId"] is None


class TestMemoryRealtimeStore:
    """Tests for MemoryRealtimeStore."""

    @pytest.mark.asyncio
    async def test_nested_set_get(self):
        """Test values are stored at nested paths."""
        store = MemoryRealtimeStore()
        await store.set("devices/DEV-1/config", {"alarm_mode": "led"})

        assert await store.get("devices/DEV-1/config") == {"alarm_mode": "led"}
        assert await store.get("devices/DEV-1") == {"config": {"alarm_mode": "led"}}

    @pytest.mark.asyncio
    async def test_missing_path(self):
        """Test a missing path reads as None."""
        store = MemoryRealtimeStore({"devices": {"DEV-1": 5}})
        assert await store.get("devices/DEV-2/config") is None
        assert await store.get("devices/DEV-1/config") is None

    @pytest.mark.asyncio
    async def test_set_none_deletes(self):
        """Test writing None removes the value."""
        store = MemoryRealtimeStore({"devices": {"DEV-1": {"state": {"wifi_connected": True}}}})
        await store.set("devices/DEV-1/state", None)
        assert await store.get("devices/DEV-1/state") is None


class TestMemoryKeyValueStorage:
    """Tests for MemoryKeyValueStorage."""

    @pytest.mark.asyncio
    async def test_item_lifecycle(self):
        """Test set, get, list and remove."""
        storage = MemoryKeyValueStorage()
        await storage.set_item("a", "1")
        await storage.set_item("b", "2")

        assert await storage.get_item("a") == "1"
        assert sorted(await storage.get_all_keys()) == ["a", "b"]

        await storage.multi_remove(["a", "missing"])
        assert await storage.get_item("a") is None
        assert await storage.get_all_keys() == ["b"]
