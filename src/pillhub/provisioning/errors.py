"""
Device provisioning error handling.

Classifies raw backend failures into a closed set of provisioning error
codes, each with a fixed bundle of user guidance, and defines the typed
exceptions raised by the provisioning services.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ProvisioningErrorCode(Enum):
    """Closed set of provisioning error codes."""
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    DEVICE_ALREADY_CLAIMED = "DEVICE_ALREADY_CLAIMED"
    INVALID_DEVICE_ID = "INVALID_DEVICE_ID"
    WIFI_CONFIG_FAILED = "WIFI_CONFIG_FAILED"
    DEVICE_OFFLINE = "DEVICE_OFFLINE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ErrorResponse:
    """User guidance attached to a provisioning error code."""
    user_message: str
    retryable: bool
    suggested_action: str
    troubleshooting_steps: List[str] = field(default_factory=list)
    support_contact: bool = False


SUPPORT_CONTACT = {
    "email": "support@pillhub.com",
    "phone": "+1-800-PILLHUB",
    "hours": "Monday to Friday, 9:00 AM - 6:00 PM",
}


ERROR_RESPONSES: Dict[ProvisioningErrorCode, ErrorResponse] = {
    ProvisioningErrorCode.DEVICE_NOT_FOUND: ErrorResponse(
        user_message="We could not find a device with that ID",
        retryable=True,
        suggested_action="Check the device ID and try again",
        troubleshooting_steps=[
            "Check that the ID is typed correctly",
            "Make sure there are no spaces before or after the ID",
            "Compare the ID with the one printed on your device",
            "The ID is on the bottom of the device or on the box",
            "If the problem persists, contact support",
        ],
    ),
    ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED: ErrorResponse(
        user_message="This device is already registered to another user",
        retryable=False,
        suggested_action="Check the device ID or contact support",
        troubleshooting_steps=[
            "Confirm that the device ID is correct",
            "If you bought a used device, the previous owner must unlink it first",
            "If you are the rightful owner, contact support with your proof of purchase",
            "Give support the device ID and your account details",
        ],
        support_contact=True,
    ),
    ProvisioningErrorCode.INVALID_DEVICE_ID: ErrorResponse(
        user_message="The device ID format is not valid",
        retryable=True,
        suggested_action="Enter a valid ID of 5 to 100 alphanumeric characters",
        troubleshooting_steps=[
            "The ID must be between 5 and 100 characters long",
            "Only letters, numbers, hyphens (-) and underscores (_) are allowed",
            "Do not include spaces or special characters",
            "Make sure you copied the whole ID",
            "Valid examples: DEVICE-12345 or DEV_ABC123",
        ],
    ),
    ProvisioningErrorCode.WIFI_CONFIG_FAILED: ErrorResponse(
        user_message="We could not configure the device Wi-Fi connection",
        retryable=True,
        suggested_action="Check the Wi-Fi credentials and try again",
        troubleshooting_steps=[
            "Check that the network name (SSID) is correct",
            "Make sure the Wi-Fi password is typed correctly",
            "Confirm that your Wi-Fi network is up and working",
            "The device only supports 2.4 GHz networks (not 5 GHz)",
            "Check that your router does not restrict new devices",
            "Try restarting your router and the device",
            "If the password uses special characters, check that they are supported",
        ],
    ),
    ProvisioningErrorCode.DEVICE_OFFLINE: ErrorResponse(
        user_message="The device is not connected or is not responding",
        retryable=True,
        suggested_action="Check that the device is powered on and connected",
        troubleshooting_steps=[
            "Check that the device is on (LED lit)",
            "Make sure the device has battery or is plugged in",
            "Confirm that the device is within range of your Wi-Fi network",
            "Try restarting the device",
            "Wait 1-2 minutes after powering on before continuing",
            "Check that your Wi-Fi network is working",
            "If the problem persists, configure the Wi-Fi again",
        ],
    ),
    ProvisioningErrorCode.PERMISSION_DENIED: ErrorResponse(
        user_message="You do not have permission to register this device",
        retryable=False,
        suggested_action="Check your account and connection, or contact support",
        troubleshooting_steps=[
            "Check that you are signed in",
            "Make sure you have a stable internet connection",
            "Sign out and sign in again",
            "Check that your account is active and unrestricted",
            "If the problem persists, contact support",
        ],
        support_contact=True,
    ),
    ProvisioningErrorCode.UNKNOWN: ErrorResponse(
        user_message="An unexpected error occurred during setup",
        retryable=True,
        suggested_action="Try again or contact support",
        troubleshooting_steps=[
            "Check your internet connection",
            "Try closing and reopening the application",
            "Make sure you have the latest version of the application",
            "If the problem persists, contact support",
        ],
        support_contact=True,
    ),
}


# Transport code table, checked first
TRANSPORT_CODE_TABLE: Dict[str, ProvisioningErrorCode] = {
    "not-found": ProvisioningErrorCode.DEVICE_NOT_FOUND,
    "permission-denied": ProvisioningErrorCode.PERMISSION_DENIED,
    "unavailable": ProvisioningErrorCode.DEVICE_OFFLINE,
    "timeout": ProvisioningErrorCode.DEVICE_OFFLINE,
    "invalid-argument": ProvisioningErrorCode.INVALID_DEVICE_ID,
    "failed-precondition": ProvisioningErrorCode.INVALID_DEVICE_ID,
}

# Message phrase table, checked in order when no transport code matched.
# Phrases cover the English and Spanish backend messages.
MESSAGE_PHRASE_TABLE: List[Tuple[Tuple[str, ...], ProvisioningErrorCode]] = [
    (("already claimed", "ya está registrado"), ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED),
    (("not found", "no encontrado"), ProvisioningErrorCode.DEVICE_NOT_FOUND),
    (("invalid", "inválido"), ProvisioningErrorCode.INVALID_DEVICE_ID),
    (("wifi", "network"), ProvisioningErrorCode.WIFI_CONFIG_FAILED),
    (("offline", "not responding"), ProvisioningErrorCode.DEVICE_OFFLINE),
    (("permission", "denied"), ProvisioningErrorCode.PERMISSION_DENIED),
]


def _read_field(raw: Any, name: str) -> Optional[str]:
    if isinstance(raw, dict):
        value = raw.get(name)
    else:
        value = getattr(raw, name, None)
        if value is None and name == "message" and isinstance(raw, BaseException):
            value = str(raw) or None
    return value if isinstance(value, str) else None


def classify(raw: Any) -> ProvisioningErrorCode:
    """
    Map a raw failure to a provisioning error code.

    The transport code is matched first, then the message is searched
    case-insensitively for known phrases. Anything else is reported as
    DEVICE_NOT_FOUND.

    Args:
        raw: Exception, dict, or any object with `code`/`message` attributes

    Returns:
        ProvisioningErrorCode
    """
    code = _read_field(raw, "code")
    if code and code in TRANSPORT_CODE_TABLE:
        return TRANSPORT_CODE_TABLE[code]

    message = _read_field(raw, "message")
    if message:
        lowered = message.lower()
        for phrases, error_code in MESSAGE_PHRASE_TABLE:
            if any(phrase in lowered for phrase in phrases):
                return error_code

    return ProvisioningErrorCode.DEVICE_NOT_FOUND


def resolve_error(code: ProvisioningErrorCode) -> ErrorResponse:
    """Return the guidance bundle for an error code."""
    return ERROR_RESPONSES.get(code, ERROR_RESPONSES[ProvisioningErrorCode.UNKNOWN])


def format_troubleshooting_steps(steps: List[str]) -> str:
    """Format troubleshooting steps for display."""
    return "\n\n".join(f"{index}. {step}" for index, step in enumerate(steps, start=1))


# =============================================================================
# Typed exceptions
# =============================================================================

class ProvisioningError(Exception):
    """
    Error raised by the provisioning services.

    Attributes:
        code: Provisioning error code or service-specific reason code
        user_message: Message safe to show to the user
        retryable: Whether the retry action should be offered
        reason: Diagnostic detail (never shown to the user)
    """

    default_retryable = True

    def __init__(
        self,
        code: str,
        user_message: str,
        retryable: Optional[bool] = None,
        reason: str = "",
        response: Optional[ErrorResponse] = None,
    ):
        super().__init__(reason or user_message)
        self.code = code
        self.user_message = user_message
        self.retryable = self.default_retryable if retryable is None else retryable
        self.reason = reason
        self.response = response

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"retryable={self.retryable}, reason={self.reason!r})"
        )


class ValidationError(ProvisioningError):
    """Malformed device id or configuration field. Local, never retried."""
    default_retryable = False


class TransientInfraError(ProvisioningError):
    """Backend unavailable, timed out, exhausted or aborted."""
    default_retryable = True


class PermissionDeniedError(ProvisioningError):
    """Caller is not allowed to perform the operation."""
    default_retryable = False


class ConflictError(ProvisioningError):
    """Device already claimed by someone else."""
    default_retryable = False


class DeviceNotFoundError(ProvisioningError):
    """Device or its record does not exist."""
    default_retryable = True


class UnknownError(ProvisioningError):
    """Unclassified failure; retryable by default."""
    default_retryable = True


class ProgressStoreError(Exception):
    """Wizard progress could not be persisted or cleared."""


ERROR_CLASSES = {
    ProvisioningErrorCode.DEVICE_NOT_FOUND: DeviceNotFoundError,
    ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED: ConflictError,
    ProvisioningErrorCode.INVALID_DEVICE_ID: ValidationError,
    ProvisioningErrorCode.WIFI_CONFIG_FAILED: TransientInfraError,
    ProvisioningErrorCode.DEVICE_OFFLINE: TransientInfraError,
    ProvisioningErrorCode.PERMISSION_DENIED: PermissionDeniedError,
    ProvisioningErrorCode.UNKNOWN: UnknownError,
}


def error_from_code(code: ProvisioningErrorCode, reason: str = "") -> ProvisioningError:
    """Build the typed exception for a provisioning error code."""
    response = resolve_error(code)
    error_cls = ERROR_CLASSES.get(code, UnknownError)
    return error_cls(
        code=code.value,
        user_message=response.user_message,
        retryable=response.retryable,
        reason=reason or code.value,
        response=response,
    )


def error_from_exception(raw: Any) -> ProvisioningError:
    """Classify a raw failure and wrap it in the matching typed exception."""
    if isinstance(raw, ProvisioningError):
        return raw

    code = classify(raw)
    reason = _read_field(raw, "message") or type(raw).__name__
    logger.debug(f"Classified {type(raw).__name__} as {code.value}")
    return error_from_code(code, reason=reason)
