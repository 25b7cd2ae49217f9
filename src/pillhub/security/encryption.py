"""
Encryption services for PillHub.

Provides AES-256-GCM sealing for secrets kept in local storage.
"""

import base64
import logging
import os
import secrets
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

# Encryption constants
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32  # 256 bits


class EncryptionService:
    """
    AES-256-GCM encryption service.

    Provides authenticated encryption with associated data (AEAD).
    """

    def __init__(self, key: Optional[bytes] = None):
        """
        Initialize encryption service.

        Args:
            key: 256-bit encryption key (generated if not provided)
        """
        if key is None:
            key = secrets.token_bytes(KEY_SIZE)

        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes")

        self._key = key

    @property
    def key(self) -> bytes:
        """Get the encryption key."""
        return self._key

    def encrypt(
        self,
        plaintext: Union[str, bytes],
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """
        Encrypt data using AES-256-GCM.

        Args:
            plaintext: Data to encrypt
            associated_data: Additional authenticated data (not encrypted)

        Returns:
            Encrypted data (nonce || ciphertext || tag)
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext = AESGCM(self._key).encrypt(nonce, plaintext, associated_data)

        # Format: nonce || ciphertext (includes tag)
        return nonce + ciphertext

    def decrypt(
        self,
        ciphertext: bytes,
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """
        Decrypt data using AES-256-GCM.

        Raises:
            ValueError: If decryption fails (invalid key, corrupted data, etc.)
        """
        if len(ciphertext) < NONCE_SIZE + TAG_SIZE:
            raise ValueError("Ciphertext too short")

        nonce = ciphertext[:NONCE_SIZE]
        actual_ciphertext = ciphertext[NONCE_SIZE:]

        try:
            return AESGCM(self._key).decrypt(nonce, actual_ciphertext, associated_data)
        except InvalidTag:
            raise ValueError("Decryption failed: invalid tag or corrupted data")

    def encrypt_to_base64(
        self,
        plaintext: Union[str, bytes],
        associated_data: Optional[bytes] = None,
    ) -> str:
        """Encrypt and return base64-encoded result."""
        ciphertext = self.encrypt(plaintext, associated_data)
        return base64.b64encode(ciphertext).decode('ascii')

    def decrypt_from_base64(
        self,
        ciphertext_b64: str,
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """Decrypt base64-encoded ciphertext."""
        try:
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        except (ValueError, TypeError):
            raise ValueError("Ciphertext is not valid base64")
        return self.decrypt(ciphertext, associated_data)

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random 256-bit encryption key."""
        return secrets.token_bytes(KEY_SIZE)


def load_or_create_key(key_path: Path) -> bytes:
    """
    Load the local sealing key, creating it on first use.

    The key file is written with 0600 permissions.
    """
    key_path = Path(key_path)

    if key_path.exists():
        with open(key_path, 'rb') as f:
            key = f.read()
        if len(key) == KEY_SIZE:
            return key
        logger.warning(f"Key file {key_path} has wrong size, regenerating")

    key = EncryptionService.generate_key()
    key_path.parent.mkdir(parents=True, exist_ok=True)
    with open(key_path, 'wb') as f:
        f.write(key)
    os.chmod(key_path, 0o600)

    logger.info(f"Created sealing key at {key_path}")
    return key
