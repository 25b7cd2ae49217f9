"""
Security module for PillHub.

Seals secrets (such as Wi-Fi passwords) before they reach local storage.
"""

from pillhub.security.encryption import EncryptionService, load_or_create_key

__all__ = [
    "EncryptionService",
    "load_or_create_key",
]
