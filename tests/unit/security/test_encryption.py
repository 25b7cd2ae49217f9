"""
Tests for pillhub.security.encryption module.
"""

import os
import stat

import pytest


class TestEncryptionService:
    """Tests for EncryptionService class."""

    def test_roundtrip(self):
        """Test encrypting and decrypting a secret."""
        from pillhub.security.encryption import EncryptionService

        service = EncryptionService()
        sealed = service.encrypt("correct horse battery staple")
        assert b"correct horse" not in sealed
        assert service.decrypt(sealed) == b"correct horse battery staple"

    def test_nonce_is_random(self):
        """Test the same plaintext seals differently each time."""
        from pillhub.security.encryption import EncryptionService

        service = EncryptionService()
        assert service.encrypt("secret") != service.encrypt("secret")

    def test_wrong_key_fails(self):
        """Test decryption with another key is rejected."""
        from pillhub.security.encryption import EncryptionService

        sealed = EncryptionService().encrypt("secret")
        with pytest.raises(ValueError):
            EncryptionService().decrypt(sealed)

    def test_associated_data_must_match(self):
        """Test associated data is authenticated."""
        from pillhub.security.encryption import EncryptionService

        service = EncryptionService()
        sealed = service.encrypt("secret", b"slot-a")
        with pytest.raises(ValueError):
            service.decrypt(sealed, b"slot-b")

    def test_short_ciphertext(self):
        """Test truncated input is rejected."""
        from pillhub.security.encryption import EncryptionService

        with pytest.raises(ValueError):
            EncryptionService().decrypt(b"short")

    def test_base64_helpers(self):
        """Test base64 sealing helpers."""
        from pillhub.security.encryption import EncryptionService

        service = EncryptionService()
        token = service.encrypt_to_base64("wifi-pass-123")
        assert isinstance(token, str)
        assert service.decrypt_from_base64(token) == b"wifi-pass-123"

    def test_invalid_base64(self):
        """Test malformed base64 is reported as ValueError."""
        from pillhub.security.encryption import EncryptionService

        with pytest.raises(ValueError):
            EncryptionService().decrypt_from_base64("not base64!!")

    def test_invalid_key_size(self):
        """Test keys must be 256 bits."""
        from pillhub.security.encryption import EncryptionService

        with pytest.raises(ValueError):
            EncryptionService(b"too short")


class TestLoadOrCreateKey:
    """Tests for load_or_create_key."""

    def test_creates_private_key(self, temp_dir):
        """Test a new key file is created with owner-only permissions."""
        from pillhub.security.encryption import KEY_SIZE, load_or_create_key

        path = temp_dir / "keys" / "wizard.key"
        key = load_or_create_key(path)

        assert len(key) == KEY_SIZE
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_reuses_existing_key(self, temp_dir):
        """Test an existing key is loaded, not replaced."""
        from pillhub.security.encryption import load_or_create_key

        path = temp_dir / "wizard.key"
        assert load_or_create_key(path) == load_or_create_key(path)

    def test_regenerates_bad_key(self, temp_dir):
        """Test a key file of the wrong size is replaced."""
        from pillhub.security.encryption import KEY_SIZE, load_or_create_key

        path = temp_dir / "wizard.key"
        path.write_bytes(b"bad")
        assert len(load_or_create_key(path)) == KEY_SIZE
