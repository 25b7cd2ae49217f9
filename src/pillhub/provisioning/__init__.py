"""
Device provisioning for PillHub.

Claims a medication dispenser for the signed-in user, configures its
Wi-Fi and alarm preferences, and keeps the durable and real-time device
configuration in step.
"""

from pillhub.provisioning.cache import ValidationCache
from pillhub.provisioning.claim import (
    ClaimStatus,
    ClaimValidationResult,
    DeviceClaimValidator,
    validate_format,
)
from pillhub.provisioning.device_config import (
    ConfigSaveResult,
    DeviceConfigSyncService,
    DeviceConfigUpdate,
    WifiConfigResult,
)
from pillhub.provisioning.errors import (
    ConflictError,
    PermissionDeniedError,
    ProvisioningError,
    ProvisioningErrorCode,
    TransientInfraError,
    UnknownError,
    ValidationError,
    classify,
    resolve_error,
)
from pillhub.provisioning.models import DeviceProvisioningFormData, WizardStep
from pillhub.provisioning.progress import WizardProgress, WizardProgressStore
from pillhub.provisioning.wizard import ExitDecision, WizardController, build_wizard

__all__ = [
    "ValidationCache",
    "ClaimStatus",
    "ClaimValidationResult",
    "DeviceClaimValidator",
    "validate_format",
    "ConfigSaveResult",
    "DeviceConfigSyncService",
    "DeviceConfigUpdate",
    "WifiConfigResult",
    "ConflictError",
    "PermissionDeniedError",
    "ProvisioningError",
    "ProvisioningErrorCode",
    "TransientInfraError",
    "UnknownError",
    "ValidationError",
    "classify",
    "resolve_error",
    "DeviceProvisioningFormData",
    "WizardStep",
    "WizardProgress",
    "WizardProgressStore",
    "ExitDecision",
    "WizardController",
    "build_wizard",
]
