"""
Tests for pillhub.provisioning.errors module.
"""

import pytest

from pillhub.provisioning.errors import (
    SUPPORT_CONTACT,
    ConflictError,
    DeviceNotFoundError,
    PermissionDeniedError,
    ProvisioningError,
    ProvisioningErrorCode,
    TransientInfraError,
    UnknownError,
    ValidationError,
    classify,
    error_from_code,
    error_from_exception,
    format_troubleshooting_steps,
    resolve_error,
)
from pillhub.storage.base import TransportError


class TestClassify:
    """Tests for the error classifier."""

    @pytest.mark.parametrize("code,expected", [
        ("not-found", ProvisioningErrorCode.DEVICE_NOT_FOUND),
        ("permission-denied", ProvisioningErrorCode.PERMISSION_DENIED),
        ("unavailable", ProvisioningErrorCode.DEVICE_OFFLINE),
        ("timeout", ProvisioningErrorCode.DEVICE_OFFLINE),
        ("invalid-argument", ProvisioningErrorCode.INVALID_DEVICE_ID),
        ("failed-precondition", ProvisioningErrorCode.INVALID_DEVICE_ID),
    ])
    def test_transport_codes(self, code, expected):
        """Test the transport code table."""
        assert classify(TransportError(code)) == expected

    def test_code_wins_over_message(self):
        """Test a matching code is used before the message."""
        raw = TransportError("not-found", "device already claimed")
        assert classify(raw) == ProvisioningErrorCode.DEVICE_NOT_FOUND

    @pytest.mark.parametrize("message,expected", [
        ("Device ALREADY CLAIMED by another user", ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED),
        ("El dispositivo ya está registrado", ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED),
        ("Record not found", ProvisioningErrorCode.DEVICE_NOT_FOUND),
        ("Dispositivo no encontrado", ProvisioningErrorCode.DEVICE_NOT_FOUND),
        ("Invalid identifier", ProvisioningErrorCode.INVALID_DEVICE_ID),
        ("WiFi handshake failed", ProvisioningErrorCode.WIFI_CONFIG_FAILED),
        ("Device offline", ProvisioningErrorCode.DEVICE_OFFLINE),
        ("device not responding", ProvisioningErrorCode.DEVICE_OFFLINE),
        ("Access denied", ProvisioningErrorCode.PERMISSION_DENIED),
    ])
    def test_message_phrases(self, message, expected):
        """Test the phrase table when no code matches."""
        assert classify(TransportError("internal", message)) == expected

    def test_plain_exception_message(self):
        """Test exceptions without a code are classified by their text."""
        assert classify(RuntimeError("device already claimed")) == ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED

    def test_dict_input(self):
        """Test dict-shaped failures."""
        assert classify({"code": "permission-denied"}) == ProvisioningErrorCode.PERMISSION_DENIED
        assert classify({"message": "already claimed"}) == ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED

    @pytest.mark.parametrize("raw", [None, {}, RuntimeError(), TransportError("internal", "boom"), 42])
    def test_default(self, raw):
        """Test unmatched failures default to DEVICE_NOT_FOUND."""
        assert classify(raw) == ProvisioningErrorCode.DEVICE_NOT_FOUND


class TestResolveError:
    """Tests for error guidance bundles."""

    @pytest.mark.parametrize("code", [
        ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED,
        ProvisioningErrorCode.PERMISSION_DENIED,
    ])
    def test_not_retryable(self, code):
        """Test claim conflicts and permission errors are final."""
        assert resolve_error(code).retryable is False

    @pytest.mark.parametrize("code", [
        ProvisioningErrorCode.DEVICE_NOT_FOUND,
        ProvisioningErrorCode.INVALID_DEVICE_ID,
        ProvisioningErrorCode.WIFI_CONFIG_FAILED,
        ProvisioningErrorCode.DEVICE_OFFLINE,
        ProvisioningErrorCode.UNKNOWN,
    ])
    def test_retryable(self, code):
        """Test everything else may be retried."""
        assert resolve_error(code).retryable is True

    def test_every_code_has_guidance(self):
        """Test every code resolves to a complete bundle."""
        for code in ProvisioningErrorCode:
            response = resolve_error(code)
            assert response.user_message
            assert response.suggested_action
            assert response.troubleshooting_steps

    def test_support_contact(self):
        """Test support details."""
        assert SUPPORT_CONTACT["email"] == "support@pillhub.com"
        assert resolve_error(ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED).support_contact is True


class TestFormatTroubleshootingSteps:
    """Tests for troubleshooting step formatting."""

    def test_numbered(self):
        """Test steps are numbered and separated by blank lines."""
        assert format_troubleshooting_steps(["First", "Second"]) == "1. First\n\n2. Second"

    def test_empty(self):
        """Test no steps yields an empty string."""
        assert format_troubleshooting_steps([]) == ""


class TestTypedErrors:
    """Tests for the exception taxonomy."""

    @pytest.mark.parametrize("code,error_cls,retryable", [
        (ProvisioningErrorCode.DEVICE_ALREADY_CLAIMED, ConflictError, False),
        (ProvisioningErrorCode.PERMISSION_DENIED, PermissionDeniedError, False),
        (ProvisioningErrorCode.INVALID_DEVICE_ID, ValidationError, True),
        (ProvisioningErrorCode.DEVICE_OFFLINE, TransientInfraError, True),
        (ProvisioningErrorCode.WIFI_CONFIG_FAILED, TransientInfraError, True),
        (ProvisioningErrorCode.DEVICE_NOT_FOUND, DeviceNotFoundError, True),
        (ProvisioningErrorCode.UNKNOWN, UnknownError, True),
    ])
    def test_error_from_code(self, code, error_cls, retryable):
        """Test each code builds the matching exception."""
        error = error_from_code(code)
        assert isinstance(error, error_cls)
        assert isinstance(error, ProvisioningError)
        assert error.code == code.value
        assert error.retryable is retryable
        assert error.user_message == resolve_error(code).user_message

    def test_error_from_exception(self):
        """Test raw failures are classified and wrapped."""
        error = error_from_exception(TransportError("permission-denied", "no access"))
        assert isinstance(error, PermissionDeniedError)
        assert error.retryable is False
        assert error.reason == "no access"

    def test_error_from_exception_passthrough(self):
        """Test typed errors pass through unchanged."""
        original = ConflictError(code="DEVICE_ALREADY_CLAIMED", user_message="taken")
        assert error_from_exception(original) is original

    def test_default_retryability(self):
        """Test class-level retryability defaults."""
        assert ValidationError("X", "bad").retryable is False
        assert TransientInfraError("X", "later").retryable is True
        assert UnknownError("X", "huh").retryable is True

    def test_to_dict(self):
        """Test the UI payload."""
        error = error_from_code(ProvisioningErrorCode.DEVICE_OFFLINE)
        assert error.to_dict() == {
            "code": "DEVICE_OFFLINE",
            "user_message": error.user_message,
            "retryable": True,
        }
