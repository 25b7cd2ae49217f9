"""
Device configuration sync service.

Writes device configuration to two stores that fail independently:

1. The durable store (collection deviceConfigs), which is authoritative.
2. The real-time store (devices/{deviceId}/config), read by the firmware.

There is no transaction across the two. A durable write followed by a
failed real-time write leaves syncStatus=pending and is reported as a
partial success. The firmware moves syncStatus to synced once it has
applied the change.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from pillhub.core.context import ProvisioningContext
from pillhub.provisioning.claim import device_prefix, validate_format
from pillhub.provisioning.errors import (
    DeviceNotFoundError,
    PermissionDeniedError,
    ProvisioningError,
    ProvisioningErrorCode,
    TransientInfraError,
    UnknownError,
    ValidationError,
    error_from_code,
)
from pillhub.provisioning.models import (
    CHANNEL_MAX,
    DEVICE_INTENSITY_MAX,
    DeviceAlarmMode,
    DeviceConfigRecord,
    DeviceRealtimeConfig,
    LedColor,
    SyncStatus,
)
from pillhub.storage.base import RETRYABLE_TRANSPORT_CODES

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_COLLECTION = "deviceConfigs"

# Fields that are mirrored to the real-time store
REALTIME_FIELDS = ("alarmMode", "ledIntensity", "ledColor")


def realtime_config_path(device_id: str) -> str:
    return f"devices/{device_id}/config"


def realtime_state_path(device_id: str) -> str:
    return f"devices/{device_id}/state"


@dataclass
class DeviceConfigUpdate:
    """Partial device configuration. Fields left as None are not written."""
    alarm_mode: Optional[Union[DeviceAlarmMode, str]] = None
    led_intensity: Optional[int] = None
    led_color: Optional[Union[LedColor, Dict[str, Any]]] = None
    wifi_configured: Optional[bool] = None
    wifi_ssid: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """Durable store fields (camelCase), only those present."""
        doc: Dict[str, Any] = {}
        if self.alarm_mode is not None:
            doc["alarmMode"] = _alarm_mode_value(self.alarm_mode)
        if self.led_intensity is not None:
            doc["ledIntensity"] = self.led_intensity
        if self.led_color is not None:
            doc["ledColor"] = _color_dict(self.led_color)
        if self.wifi_configured is not None:
            doc["wifiConfigured"] = self.wifi_configured
        if self.wifi_ssid is not None:
            doc["wifiSSID"] = self.wifi_ssid
        return doc

    def to_realtime(self) -> Dict[str, Any]:
        """Real-time store fields (snake_case) for alarm and LED settings."""
        payload: Dict[str, Any] = {}
        if self.alarm_mode is not None:
            payload["alarm_mode"] = _alarm_mode_value(self.alarm_mode)
        if self.led_intensity is not None:
            payload["led_intensity"] = self.led_intensity
        if self.led_color is not None:
            payload["led_color"] = _color_dict(self.led_color)
        return payload

    @property
    def touches_realtime(self) -> bool:
        return any(
            value is not None for value in (self.alarm_mode, self.led_intensity, self.led_color)
        )


def _alarm_mode_value(mode: Union[DeviceAlarmMode, str]) -> str:
    return mode.value if isinstance(mode, DeviceAlarmMode) else mode


def _color_dict(color: Union[LedColor, Dict[str, Any]]) -> Dict[str, Any]:
    return color.to_dict() if isinstance(color, LedColor) else dict(color)


@dataclass
class ConfigSaveResult:
    """Outcome of a two-store configuration write."""
    durable_written: bool
    realtime_written: bool = False
    realtime_error: Optional[ProvisioningError] = None

    @property
    def is_partial(self) -> bool:
        return self.realtime_error is not None


@dataclass
class WifiConfigResult:
    """
    Outcome of a Wi-Fi configuration.

    `accepted` means the configuration was stored; `connectivity_confirmed`
    means the device has reported that it joined the network. The second
    may lag behind the first.
    """
    accepted: bool
    connectivity_confirmed: bool = False
    warning: Optional[str] = None
    realtime_written: bool = False


def _validation_error(code: str, user_message: str, reason: str) -> ValidationError:
    return ValidationError(code=code, user_message=user_message, reason=reason)


def validate_device_id(device_id: str) -> None:
    message = validate_format(device_id)
    if message:
        raise _validation_error(
            ProvisioningErrorCode.INVALID_DEVICE_ID.value,
            message,
            f"Invalid device ID: {message}",
        )


def validate_config(update: DeviceConfigUpdate) -> None:
    """
    Validate every field present in `update`.

    Raises:
        ValidationError: On the first invalid field
    """
    if update.alarm_mode is not None:
        mode = _alarm_mode_value(update.alarm_mode)
        if mode not in {m.value for m in DeviceAlarmMode}:
            raise _validation_error(
                "INVALID_ALARM_MODE",
                "The selected alarm mode is not valid.",
                f"Invalid alarm mode: {mode}",
            )

    if update.led_intensity is not None:
        intensity = update.led_intensity
        if isinstance(intensity, bool) or not isinstance(intensity, (int, float)):
            raise _validation_error(
                "INVALID_LED_INTENSITY",
                "The LED intensity must be a number.",
                "Invalid LED intensity: must be a number",
            )
        if not 0 <= intensity <= DEVICE_INTENSITY_MAX:
            raise _validation_error(
                "LED_INTENSITY_OUT_OF_RANGE",
                f"The LED intensity must be between 0 and {DEVICE_INTENSITY_MAX}.",
                f"Invalid LED intensity: {intensity} (must be 0-{DEVICE_INTENSITY_MAX})",
            )

    if update.led_color is not None:
        if not isinstance(update.led_color, (LedColor, dict)):
            raise _validation_error(
                "INVALID_LED_COLOR",
                "The LED color is not valid.",
                "Invalid LED color: must have r, g, b",
            )
        channels = _color_dict(update.led_color)
        values = [channels.get(name) for name in ("r", "g", "b")]
        if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in values):
            raise _validation_error(
                "INVALID_LED_COLOR_VALUES",
                "Color values must be numbers.",
                "Invalid LED color: r, g, b must be numbers",
            )
        if any(not 0 <= v <= CHANNEL_MAX for v in values):
            r, g, b = values
            raise _validation_error(
                "LED_COLOR_OUT_OF_RANGE",
                f"Color values must be between 0 and {CHANNEL_MAX}.",
                f"Invalid LED color values: r={r}, g={g}, b={b} (must be 0-{CHANNEL_MAX})",
            )


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: int = 1000,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    name: str = "operation",
) -> T:
    """
    Run `operation`, retrying transient transport failures.

    Waits base_delay_ms * attempt between attempts. Failures whose code is
    not transient, and typed provisioning errors, propagate immediately.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except ProvisioningError:
            raise
        except Exception as e:
            code = getattr(e, "code", None)
            if code not in RETRYABLE_TRANSPORT_CODES or attempt >= max_attempts:
                raise
            logger.warning(f"{name}: retry attempt {attempt}/{max_attempts} after error: {code}")
            await sleep(base_delay_ms * attempt / 1000)
            attempt += 1


def translate_error(error: Exception, operation: str) -> ProvisioningError:
    """Convert a raw backend failure into the typed error taxonomy."""
    if isinstance(error, ProvisioningError):
        return error

    code = getattr(error, "code", None)
    logger.error(f"{operation} failed: code={code} message={error}")

    if code == "permission-denied":
        return PermissionDeniedError(
            code="PERMISSION_DENIED",
            user_message="You do not have permission to change this device's configuration.",
            retryable=False,
            reason=f"Permission denied for {operation}",
        )
    if code == "unavailable":
        return TransientInfraError(
            code="SERVICE_UNAVAILABLE",
            user_message="The service is not available. Please check your internet connection.",
            retryable=True,
            reason=f"Service unavailable for {operation}",
        )
    if code in ("deadline-exceeded", "timeout"):
        return TransientInfraError(
            code="TIMEOUT",
            user_message="The operation took too long. Please try again.",
            retryable=True,
            reason=f"Operation timeout for {operation}",
        )
    if code in ("resource-exhausted", "aborted"):
        return TransientInfraError(
            code="SERVICE_BUSY",
            user_message="The service is busy. Please try again in a moment.",
            retryable=True,
            reason=f"{code} during {operation}",
        )
    if code == "not-found":
        return DeviceNotFoundError(
            code="NOT_FOUND",
            user_message="The device was not found.",
            retryable=False,
            reason=f"Device not found for {operation}",
        )
    return UnknownError(
        code="UNKNOWN_ERROR",
        user_message="An unexpected error occurred. Please try again.",
        retryable=True,
        reason=f"Unknown error during {operation}: {error}",
    )


class DeviceConfigSyncService:
    """
    Validates and writes device configuration to the durable and real-time stores.

    Each store write is retried on its own. Real-time writes read the
    current payload and merge into it so that fields written by the
    firmware are preserved.
    """

    def __init__(
        self,
        context: ProvisioningContext,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._context = context
        self._settings = context.settings
        self._sleep = sleep

    def _require_user(self) -> str:
        user_id = self._context.current_user_id()
        if not user_id:
            raise PermissionDeniedError(
                code="NOT_AUTHENTICATED",
                user_message="You are not signed in. Please sign in and try again.",
                retryable=False,
                reason="User not authenticated",
            )
        return user_id

    async def _retry(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        return await retry_operation(
            operation,
            max_attempts=self._settings.retry_max_attempts,
            base_delay_ms=self._settings.retry_base_delay_ms,
            sleep=self._sleep,
            name=name,
        )

    async def _merge_realtime(self, path: str, changes: Dict[str, Any]) -> None:
        async def read_merge_write():
            existing = await self._context.realtime.get(path)
            payload = dict(existing) if isinstance(existing, dict) else {}
            payload.update(changes)
            await self._context.realtime.set(path, payload)

        await self._retry(read_merge_write, name=f"merge {path}")

    async def save_device_config(self, device_id: str, update: DeviceConfigUpdate) -> ConfigSaveResult:
        """
        Save a partial configuration.

        The durable write must succeed; a failure there is raised. When the
        update carries alarm or LED settings they are then merged into the
        real-time payload, and a failure there is returned as a partial result.

        Raises:
            ProvisioningError: On missing session, invalid input, or durable write failure
        """
        logger.info(f"save_device_config called for {device_prefix(device_id)}")

        self._require_user()
        validate_device_id(device_id)
        validate_config(update)

        document = update.to_document()
        document["syncStatus"] = SyncStatus.PENDING.value
        document["lastUpdated"] = self._context.clock()

        try:
            await self._retry(
                lambda: self._context.documents.merge_document(CONFIG_COLLECTION, device_id, document),
                name="save_device_config:durable",
            )
        except Exception as e:
            raise translate_error(e, "save_device_config") from e
        logger.info(f"Durable config saved for {device_prefix(device_id)}")

        result = ConfigSaveResult(durable_written=True)
        if not update.touches_realtime:
            return result

        try:
            await self._merge_realtime(realtime_config_path(device_id), update.to_realtime())
            result.realtime_written = True
            logger.info(f"Real-time config saved for {device_prefix(device_id)}")
        except Exception as e:
            result.realtime_error = translate_error(e, "save_device_config:realtime")
            logger.warning(
                f"Real-time config write failed for {device_prefix(device_id)}, "
                f"sync stays pending: {result.realtime_error.code}"
            )
        return result

    async def configure_wifi(self, device_id: str, ssid: str, password: str) -> WifiConfigResult:
        """
        Store Wi-Fi credentials for a device and probe for connectivity.

        After the writes, waits a grace period and reads the device-reported
        connectivity flag. A missing or negative flag is a warning only.

        Raises:
            ProvisioningError: On missing session, invalid input, or durable write failure
        """
        logger.info(f"configure_wifi called for {device_prefix(device_id)}")

        self._require_user()
        validate_device_id(device_id)
        if not ssid or not ssid.strip():
            raise _validation_error(
                "INVALID_WIFI_SSID",
                "Enter the name of your Wi-Fi network.",
                "Wi-Fi SSID is empty",
            )
        min_length = self._settings.min_wifi_password_length
        if not password or len(password) < min_length:
            raise _validation_error(
                "WIFI_PASSWORD_TOO_SHORT",
                f"The Wi-Fi password must be at least {min_length} characters.",
                "Wi-Fi password too short",
            )

        now = self._context.clock()
        document = DeviceConfigUpdate(wifi_configured=True, wifi_ssid=ssid).to_document()
        document["syncStatus"] = SyncStatus.PENDING.value
        document["lastUpdated"] = now

        try:
            await self._retry(
                lambda: self._context.documents.merge_document(CONFIG_COLLECTION, device_id, document),
                name="configure_wifi:durable",
            )
        except Exception as e:
            error = translate_error(e, "configure_wifi")
            if isinstance(error, DeviceNotFoundError):
                raise error_from_code(
                    ProvisioningErrorCode.WIFI_CONFIG_FAILED, reason=error.reason
                ) from e
            raise error from e

        result = WifiConfigResult(accepted=True)
        try:
            await self._merge_realtime(
                realtime_config_path(device_id),
                {
                    "wifi_ssid": ssid,
                    "wifi_password": password,
                    "wifi_configured": True,
                    "wifi_configured_at": now,
                },
            )
            result.realtime_written = True
        except Exception as e:
            error = translate_error(e, "configure_wifi:realtime")
            logger.warning(
                f"Real-time Wi-Fi write failed for {device_prefix(device_id)}: {error.code}"
            )
            result.warning = (
                "Wi-Fi settings were saved but have not reached the device yet. Please try again."
            )
            return result

        result.connectivity_confirmed = await self.probe_connectivity(device_id)
        if not result.connectivity_confirmed:
            result.warning = (
                "Configuration saved. The device has not confirmed its connection yet; "
                "this can take a few minutes."
            )
        return result

    async def probe_connectivity(self, device_id: str) -> bool:
        """Wait the grace period, then read the device-reported Wi-Fi flag. Never raises."""
        await self._sleep(self._settings.wifi_probe_grace_seconds)
        try:
            state = await self._context.realtime.get(realtime_state_path(device_id))
        except Exception as e:
            logger.warning(f"Connectivity probe failed for {device_prefix(device_id)}: {e}")
            return False

        connected = isinstance(state, dict) and state.get("wifi_connected") is True
        logger.info(f"Device {device_prefix(device_id)} wifi_connected={connected}")
        return connected

    async def get_device_config(self, device_id: str) -> Optional[DeviceConfigRecord]:
        """
        Read the durable configuration, filling defaults for missing fields.

        Returns:
            DeviceConfigRecord, or None if no configuration exists
        """
        logger.info(f"get_device_config called for {device_prefix(device_id)}")

        self._require_user()
        validate_device_id(device_id)

        try:
            data = await self._retry(
                lambda: self._context.documents.get_document(CONFIG_COLLECTION, device_id),
                name="get_device_config",
            )
        except Exception as e:
            raise translate_error(e, "get_device_config") from e

        if data is None:
            logger.info(f"No config found for {device_prefix(device_id)}")
            return None
        return DeviceConfigRecord.from_document(device_id, data)

    async def get_realtime_config(self, device_id: str) -> Optional[DeviceRealtimeConfig]:
        """Read the real-time configuration payload."""
        self._require_user()
        validate_device_id(device_id)

        path = realtime_config_path(device_id)
        try:
            data = await self._retry(
                lambda: self._context.realtime.get(path),
                name="get_realtime_config",
            )
        except Exception as e:
            raise translate_error(e, "get_realtime_config") from e

        if not isinstance(data, dict):
            return None
        return DeviceRealtimeConfig.from_payload(data)
