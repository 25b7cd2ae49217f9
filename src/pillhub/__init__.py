"""
PillHub - Device provisioning for medication-dispensing devices.

Claims a physical dispenser, configures its network and behavioral
preferences, and keeps the durable configuration record and the
real-time device channel consistent.
"""

__version__ = "1.0.0"
__author__ = "PillHub Team"

from pillhub.core.config import Config, load_config
from pillhub.core.context import ProvisioningContext

__all__ = [
    "Config",
    "load_config",
    "ProvisioningContext",
    "__version__",
]
