"""
Configuration management for PillHub.

Handles loading, validation, and access to configuration settings.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


# Default configuration paths
CONFIG_PATHS = [
    "/etc/pillhub/config.yaml",
    os.path.expanduser("~/.config/pillhub/config.yaml"),
    "config.yaml",
]

CONFIG_ENV_VAR = "PILLHUB_CONFIG"
TOKEN_ENV_VAR = "PILLHUB_FIREBASE_TOKEN"


@dataclass
class ProvisioningSettings:
    """Tunables for the provisioning wizard and its services."""
    debounce_ms: int = 500
    validation_cache_ttl_seconds: int = 300  # 5 minutes
    validation_cache_prefix: str = "@onboarding_device_validation_"
    progress_ttl_days: int = 7
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    wifi_probe_grace_seconds: float = 2.0
    min_wifi_password_length: int = 8


@dataclass
class FirebaseConfig:
    """Backend connection configuration."""
    project_id: str = ""
    database_url: str = ""
    auth_token: str = ""  # Prefer PILLHUB_FIREBASE_TOKEN
    request_timeout_seconds: int = 30


@dataclass
class StorageConfig:
    """Local persistent storage configuration."""
    data_dir: str = os.path.expanduser("~/.local/share/pillhub")
    encrypt_wifi_password: bool = True

    @property
    def storage_file(self) -> Path:
        return Path(self.data_dir) / "storage.json"

    @property
    def key_file(self) -> Path:
        return Path(self.data_dir) / "wizard.key"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _build_section(section_cls, data: Dict[str, Any], name: str):
    """Build a config dataclass, ignoring keys it does not know."""
    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{name}' config: {sorted(unknown)}")
    return section_cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Config:
    """Main configuration class."""
    version: int = 1
    provisioning: ProvisioningSettings = field(default_factory=ProvisioningSettings)
    firebase: FirebaseConfig = field(default_factory=FirebaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "version" in data:
            config.version = data["version"]

        if "provisioning" in data:
            config.provisioning = _build_section(
                ProvisioningSettings, data["provisioning"] or {}, "provisioning"
            )

        if "firebase" in data:
            config.firebase = _build_section(FirebaseConfig, data["firebase"] or {}, "firebase")

        if "storage" in data:
            config.storage = _build_section(StorageConfig, data["storage"] or {}, "storage")

        if "logging" in data:
            config.logging = _build_section(LoggingConfig, data["logging"] or {}, "logging")

        token = os.environ.get(TOKEN_ENV_VAR)
        if token:
            config.firebase.auth_token = token

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert Config to dictionary. The auth token is never exported."""
        return {
            "version": self.version,
            "provisioning": {
                "debounce_ms": self.provisioning.debounce_ms,
                "validation_cache_ttl_seconds": self.provisioning.validation_cache_ttl_seconds,
                "validation_cache_prefix": self.provisioning.validation_cache_prefix,
                "progress_ttl_days": self.provisioning.progress_ttl_days,
                "retry_max_attempts": self.provisioning.retry_max_attempts,
                "retry_base_delay_ms": self.provisioning.retry_base_delay_ms,
                "wifi_probe_grace_seconds": self.provisioning.wifi_probe_grace_seconds,
                "min_wifi_password_length": self.provisioning.min_wifi_password_length,
            },
            "firebase": {
                "project_id": self.firebase.project_id,
                "database_url": self.firebase.database_url,
                "request_timeout_seconds": self.firebase.request_timeout_seconds,
            },
            "storage": {
                "data_dir": self.storage.data_dir,
                "encrypt_wifi_password": self.storage.encrypt_wifi_password,
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
            },
        }

    def save(self, path: Optional[str] = None):
        """Save configuration to file."""
        if path is None:
            path = CONFIG_PATHS[1]

        # Ensure directory exists
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)


def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration from file.

    Args:
        path: Path to config file. If None, uses PILLHUB_CONFIG or
            searches default locations.

    Returns:
        Config object with loaded or default settings.
    """
    if path is not None:
        paths_to_try = [path]
    elif os.environ.get(CONFIG_ENV_VAR):
        paths_to_try = [os.environ[CONFIG_ENV_VAR]]
    else:
        paths_to_try = CONFIG_PATHS

    for config_path in paths_to_try:
        if os.path.exists(config_path):
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f)
                    if data:
                        return Config.from_dict(data)
            except (OSError, yaml.YAMLError, TypeError) as e:
                logger.warning(f"Failed to load config from {config_path}: {e}")

    # Return default config
    return Config.from_dict({})


def get_config_path() -> Optional[str]:
    """Get the path to the active config file."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    for path in CONFIG_PATHS:
        if os.path.exists(path):
            return path
    return None
