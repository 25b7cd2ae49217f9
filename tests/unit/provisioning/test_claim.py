"""
Tests for pillhub.provisioning.claim module.
"""

import asyncio
import string
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest

from pillhub.provisioning.cache import ValidationCache
from pillhub.provisioning.claim import (
    ClaimStatus,
    DeviceClaimValidator,
    validate_format,
)
from pillhub.provisioning.errors import ConflictError, ProvisioningErrorCode, ValidationError
from pillhub.storage.base import DocumentStore, TransportError
from pillhub.storage.memory import MemoryDocumentStore


class GatedDocumentStore(DocumentStore):
    """Document store whose reads wait until the test releases them."""

    def __init__(self):
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls = []

    def gate(self, doc_id: str) -> asyncio.Event:
        return self.gates.setdefault(doc_id, asyncio.Event())

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append(doc_id)
        await self.gate(doc_id).wait()
        return None

    async def merge_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError


@pytest.fixture
def cache(storage, clock):
    return ValidationCache(storage, clock=clock)


@pytest.fixture
def registry():
    return MemoryDocumentStore({
        "devices": {
            "DEVICE-CLAIMED": {"primaryPatientId": "someone-else"},
            "DEVICE-FREE": {"primaryPatientId": None},
        }
    })


@pytest.fixture
def validator(registry, cache):
    return DeviceClaimValidator(registry, cache, debounce_ms=10)


async def spin(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


class TestValidateFormat:
    """Tests for validate_format."""

    @pytest.mark.parametrize("value,message", [
        ("", "Device ID is required"),
        ("   ", "Device ID is required"),
        ("AB", "Device ID must be at least 5 characters"),
        ("A" * 101, "Device ID cannot be more than 100 characters"),
        ("DEV 12345", "Device ID can only contain letters, numbers, hyphens and underscores"),
        ("DEV.12345", "Device ID can only contain letters, numbers, hyphens and underscores"),
        ("ABCDE\n", "Device ID can only contain letters, numbers, hyphens and underscores"),
        ("DEVICE-12345\n", "Device ID can only contain letters, numbers, hyphens and underscores"),
    ])
    def test_rejects(self, value, message):
        """Test each rule's message."""
        assert validate_format(value) == message

    @pytest.mark.parametrize("value", ["ABCDE", "DEVICE-12345", "dev_abc123", "A" * 100, "-_-_-"])
    def test_accepts(self, value):
        """Test valid ids."""
        assert validate_format(value) is None

    def test_matches_rule_for_all_lengths(self):
        """Test acceptance is exactly length 5-100 over [A-Za-z0-9_-]."""
        alphabet = string.ascii_letters + string.digits + "_-"
        for length in range(0, 105):
            value = (alphabet * 2)[:length]
            expected = 5 <= length <= 100
            assert (validate_format(value) is None) == expected
            assert validate_format(value) == validate_format(value)


class TestValidate:
    """Tests for the immediate validation path."""

    @pytest.mark.asyncio
    async def test_format_error_no_lookup(self, cache):
        """Test malformed ids fail without touching the registry."""
        documents = AsyncMock(spec=DocumentStore)
        validator = DeviceClaimValidator(documents, cache)

        result = await validator.validate("AB")

        assert result.status == ClaimStatus.FORMAT_ERROR
        assert "at least 5 characters" in result.message
        assert isinstance(result.error, ValidationError)
        documents.get_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_trailing_newline_no_lookup(self, cache):
        """Test an id with a trailing newline is a format error, not a lookup."""
        documents = AsyncMock(spec=DocumentStore)
        validator = DeviceClaimValidator(documents, cache)

        result = await validator.validate("DEVICE-12345\n")

        assert result.status == ClaimStatus.FORMAT_ERROR
        documents.get_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_unclaimed_device_one_lookup(self, cache):
        """Test an unknown, well-formed id is ok after exactly one lookup."""
        documents = AsyncMock(spec=DocumentStore)
        documents.get_document.return_value = None
        validator = DeviceClaimValidator(documents, cache)

        result = await validator.validate("DEVICE-12345")

        assert result.ok
        documents.get_document.assert_awaited_once_with("devices", "DEVICE-12345")

    @pytest.mark.asyncio
    async def test_existing_unclaimed_device(self, validator):
        """Test a registered device without a patient is available."""
        assert (await validator.validate("DEVICE-FREE")).ok

    @pytest.mark.asyncio
    async def test_claimed_device(self, validator):
        """Test a device with a primary patient is unavailable."""
        result = await validator.validate("DEVICE-CLAIMED")

        assert result.status == ClaimStatus.AVAILABILITY_ERROR
        assert isinstance(result.error, ConflictError)
        assert result.error.code == ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED.value
        assert result.error.retryable is False
        with pytest.raises(ConflictError):
            result.raise_for_status()

    @pytest.mark.asyncio
    async def test_ok_results_cached(self, cache):
        """Test a second validation is served from cache."""
        documents = AsyncMock(spec=DocumentStore)
        documents.get_document.return_value = None
        validator = DeviceClaimValidator(documents, cache)

        await validator.validate("DEVICE-12345")
        await validator.validate("DEVICE-12345")
        assert documents.get_document.await_count == 1

        await validator.validate("DEVICE-12345", use_cache=False)
        assert documents.get_document.await_count == 2

    @pytest.mark.asyncio
    async def test_errors_not_cached(self, cache):
        """Test failed availability checks are retried immediately."""
        documents = AsyncMock(spec=DocumentStore)
        documents.get_document.return_value = {"primaryPatientId": "p-1"}
        validator = DeviceClaimValidator(documents, cache)

        await validator.validate("DEVICE-12345")
        documents.get_document.return_value = None
        result = await validator.validate("DEVICE-12345")

        assert result.ok
        assert documents.get_document.await_count == 2

    @pytest.mark.asyncio
    async def test_lookup_failure_classified(self, cache):
        """Test backend failures become availability errors."""
        documents = AsyncMock(spec=DocumentStore)
        documents.get_document.side_effect = TransportError("unavailable", "backend down")
        validator = DeviceClaimValidator(documents, cache)

        result = await validator.validate("DEVICE-12345")

        assert result.status == ClaimStatus.AVAILABILITY_ERROR
        assert result.error.code == ProvisioningErrorCode.DEVICE_OFFLINE.value
        assert result.error.retryable is True
        assert await cache.get("DEVICE-12345") is None


class TestRequestValidation:
    """Tests for the debounced, token-guarded path."""

    @pytest.mark.asyncio
    async def test_format_error_applied_immediately(self, validator):
        """Test format errors are applied without waiting."""
        states = []
        validator.add_listener(states.append)

        token = await validator.request_validation("AB")

        assert token == 1
        assert validator.state.result.status == ClaimStatus.FORMAT_ERROR
        assert states[-1].result.message == "Device ID must be at least 5 characters"

    @pytest.mark.asyncio
    async def test_debounced_lookup(self, validator):
        """Test a valid id is checked after the debounce window."""
        await validator.request_validation("DEVICE-FREE")
        assert validator.state.result is None

        await validator.wait_idle()

        assert validator.state.result.ok
        assert validator.state.is_checking is False

    @pytest.mark.asyncio
    async def test_rapid_requests_collapse(self, cache):
        """Test only the last request within the window is dispatched."""
        documents = AsyncMock(spec=DocumentStore)
        documents.get_document.return_value = None
        validator = DeviceClaimValidator(documents, cache, debounce_ms=50)

        for value in ("DEVIC", "DEVICE", "DEVICE-", "DEVICE-1"):
            await validator.request_validation(value)
        await validator.wait_idle()

        documents.get_document.assert_awaited_once_with("devices", "DEVICE-1")
        assert validator.state.device_id == "DEVICE-1"
        assert validator.state.token == 4

    @pytest.mark.asyncio
    async def test_stale_result_discarded(self, cache):
        """Test a slow superseded lookup never overwrites a newer result."""
        documents = GatedDocumentStore()
        validator = DeviceClaimValidator(documents, cache, debounce_ms=0)
        applied = []
        validator.add_listener(lambda state: applied.append((state.token, state.device_id, state.result)))

        await validator.request_validation("ABCDE")
        await spin()
        assert documents.calls == ["ABCDE"]

        await validator.request_validation("ABCDEF")
        await spin()
        assert documents.calls == ["ABCDE", "ABCDEF"]

        # Second lookup resolves first
        documents.gate("ABCDEF").set()
        await spin()
        assert validator.state.device_id == "ABCDEF"
        assert validator.state.result.ok

        documents.gate("ABCDE").set()
        await validator.wait_idle()

        assert validator.state.device_id == "ABCDEF"
        assert validator.state.token == 2
        assert all(result is None for token, _, result in applied if token == 1)

    @pytest.mark.asyncio
    async def test_async_listener(self, validator):
        """Test coroutine listeners are awaited."""
        seen = []

        async def listener(state):
            await asyncio.sleep(0)
            seen.append(state.token)

        validator.add_listener(listener)
        await validator.request_validation("AB")
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_listener_registered_once(self, validator):
        """Test adding the same listener twice delivers each state once."""
        seen = []
        validator.add_listener(seen.append)
        validator.add_listener(seen.append)

        await validator.request_validation("AB")

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_remove_listener(self, validator):
        """Test removed listeners stop receiving state."""
        seen = []
        validator.add_listener(seen.append)
        validator.remove_listener(seen.append)
        await validator.request_validation("AB")
        assert seen == []

    @pytest.mark.asyncio
    async def test_cancel_pending(self, cache):
        """Test an undispatched request can be dropped."""
        documents = AsyncMock(spec=DocumentStore)
        validator = DeviceClaimValidator(documents, cache, debounce_ms=50)

        await validator.request_validation("DEVICE-12345")
        validator.cancel_pending()
        await validator.wait_idle()

        documents.get_document.assert_not_called()
