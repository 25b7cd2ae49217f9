"""
Core PillHub components.

This module contains configuration and the explicit dependency context.
"""

from pillhub.core.config import Config, ProvisioningSettings, load_config
from pillhub.core.context import HapticFeedbackType, ProvisioningContext

__all__ = [
    "Config",
    "ProvisioningSettings",
    "load_config",
    "HapticFeedbackType",
    "ProvisioningContext",
]
