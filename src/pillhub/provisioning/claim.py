"""
Device claim validation.

Checks that a device id is well formed and that the device is not already
claimed by another user. Availability lookups are debounced while the user
types, and every request carries a token so that a slow, superseded lookup
can never overwrite the result of a newer one.

The availability check is an optimistic read of the shared registry. The
claim itself is enforced elsewhere.
"""

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from pillhub.provisioning.cache import ValidationCache
from pillhub.provisioning.errors import (
    ProvisioningError,
    ProvisioningErrorCode,
    ValidationError,
    error_from_code,
    error_from_exception,
)
from pillhub.provisioning.models import DeviceClaimRecord
from pillhub.storage.base import DocumentStore

logger = logging.getLogger(__name__)

DEVICES_COLLECTION = "devices"

MIN_DEVICE_ID_LENGTH = 5
MAX_DEVICE_ID_LENGTH = 100
DEVICE_ID_RE = re.compile(r"[A-Za-z0-9_-]+")


def validate_format(device_id: Optional[str]) -> Optional[str]:
    """
    Check a device id against the format rules.

    Returns:
        The message for the first violated rule, or None if the id is valid
    """
    if not device_id or not device_id.strip():
        return "Device ID is required"
    if len(device_id.strip()) < MIN_DEVICE_ID_LENGTH:
        return f"Device ID must be at least {MIN_DEVICE_ID_LENGTH} characters"
    if len(device_id) > MAX_DEVICE_ID_LENGTH:
        return f"Device ID cannot be more than {MAX_DEVICE_ID_LENGTH} characters"
    if not DEVICE_ID_RE.fullmatch(device_id):
        return "Device ID can only contain letters, numbers, hyphens and underscores"
    return None


def device_prefix(device_id: str) -> str:
    """Truncated device id for log messages."""
    return f"{device_id[:8]}..."


class ClaimStatus(Enum):
    """Outcome of a claim validation."""
    OK = "ok"
    FORMAT_ERROR = "format_error"
    AVAILABILITY_ERROR = "availability_error"


@dataclass
class ClaimValidationResult:
    """Result of validating one device id."""
    device_id: str
    status: ClaimStatus
    message: Optional[str] = None
    error: Optional[ProvisioningError] = None

    @property
    def ok(self) -> bool:
        return self.status == ClaimStatus.OK

    def raise_for_status(self) -> None:
        """Raise the typed error for a failed validation."""
        if self.error is not None:
            raise self.error


@dataclass
class ClaimValidationState:
    """Validation state as last applied for the latest request."""
    device_id: str
    token: int
    is_checking: bool = False
    result: Optional[ClaimValidationResult] = None


# Listeners may be plain callables or coroutine functions
ClaimListener = Callable[[ClaimValidationState], Any]


class DeviceClaimValidator:
    """
    Validates device ids against the format rules and the device registry.

    `validate()` performs an immediate check. `request_validation()` is the
    input-driven path: format errors are reported at once, availability
    lookups wait for the debounce window, and a newer request replaces a
    pending one before it is dispatched.
    """

    def __init__(
        self,
        documents: DocumentStore,
        cache: ValidationCache,
        debounce_ms: int = 500,
    ):
        self._documents = documents
        self._cache = cache
        self._debounce_seconds = debounce_ms / 1000

        self._token = 0
        self._state: Optional[ClaimValidationState] = None
        self._pending: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._listeners: List[ClaimListener] = []

    @property
    def latest_token(self) -> int:
        return self._token

    @property
    def state(self) -> Optional[ClaimValidationState]:
        return self._state

    def add_listener(self, listener: ClaimListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ClaimListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def lookup(self, device_id: str) -> Optional[DeviceClaimRecord]:
        """Read the registry record for a device."""
        data = await self._documents.get_document(DEVICES_COLLECTION, device_id)
        if data is None:
            return None
        return DeviceClaimRecord.from_document(device_id, data)

    async def validate(self, device_id: str, use_cache: bool = True) -> ClaimValidationResult:
        """
        Validate format and availability of a device id.

        Format errors fail fast without a network call. Only successful
        results are cached.
        """
        format_error = validate_format(device_id)
        if format_error:
            return ClaimValidationResult(
                device_id=device_id,
                status=ClaimStatus.FORMAT_ERROR,
                message=format_error,
                error=ValidationError(
                    code=ProvisioningErrorCode.INVALID_DEVICE_ID.value,
                    user_message=format_error,
                    reason=f"format: {format_error}",
                ),
            )

        if use_cache and await self._cache.get(device_id):
            logger.debug(f"Availability of {device_prefix(device_id)} served from cache")
            return ClaimValidationResult(device_id=device_id, status=ClaimStatus.OK)

        try:
            record = await self.lookup(device_id)
        except Exception as e:
            error = error_from_exception(e)
            logger.error(f"Availability check failed for {device_prefix(device_id)}: {error.code}")
            return ClaimValidationResult(
                device_id=device_id,
                status=ClaimStatus.AVAILABILITY_ERROR,
                message=error.user_message,
                error=error,
            )

        if record is not None and record.is_claimed:
            error = error_from_code(
                ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED,
                reason=f"device {device_prefix(device_id)} has a primary patient",
            )
            logger.info(f"Device {device_prefix(device_id)} is already claimed")
            return ClaimValidationResult(
                device_id=device_id,
                status=ClaimStatus.AVAILABILITY_ERROR,
                message=error.user_message,
                error=error,
            )

        await self._cache.set(device_id, True)
        return ClaimValidationResult(device_id=device_id, status=ClaimStatus.OK)

    async def request_validation(self, device_id: str) -> int:
        """
        Request validation for the latest input value.

        Returns:
            The token assigned to this request
        """
        self._token += 1
        token = self._token

        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

        format_error = validate_format(device_id)
        if format_error:
            result = ClaimValidationResult(
                device_id=device_id,
                status=ClaimStatus.FORMAT_ERROR,
                message=format_error,
            )
            await self._apply(ClaimValidationState(device_id=device_id, token=token, result=result))
            return token

        self._pending = asyncio.ensure_future(self._debounced_lookup(device_id, token))
        await self._apply(ClaimValidationState(device_id=device_id, token=token))
        return token

    async def _debounced_lookup(self, device_id: str, token: int) -> None:
        await asyncio.sleep(self._debounce_seconds)

        # Dispatched: from here on the lookup runs to completion
        task = asyncio.current_task()
        if self._pending is task:
            self._pending = None
        self._in_flight.add(task)
        try:
            if token == self._token:
                await self._apply(ClaimValidationState(device_id=device_id, token=token, is_checking=True))

            result = await self.validate(device_id)

            if token != self._token:
                logger.debug(
                    f"Discarding stale result for {device_prefix(device_id)} "
                    f"(token {token}, latest {self._token})"
                )
                return
            await self._apply(ClaimValidationState(device_id=device_id, token=token, result=result))
        finally:
            self._in_flight.discard(task)

    async def _apply(self, state: ClaimValidationState) -> None:
        self._state = state
        for listener in list(self._listeners):
            outcome = listener(state)
            if inspect.isawaitable(outcome):
                await outcome

    async def wait_idle(self) -> None:
        """Wait for the pending debounce and all dispatched lookups."""
        while True:
            tasks = [task for task in self._in_flight if not task.done()]
            if self._pending is not None and not self._pending.done():
                tasks.append(self._pending)
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def cancel_pending(self) -> None:
        """Drop a request that has not been dispatched yet."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
