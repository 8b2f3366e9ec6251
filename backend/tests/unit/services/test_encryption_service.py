"""
Unit tests for EncryptionService.

WHY: Mailbox tokens are only as safe as this service. Wrong keys and
corrupted values must fail loudly, never decrypt to garbage.
"""

import pytest

from casenotify.core.exceptions import EncryptionError
from casenotify.services.encryption_service import EncryptionService


class TestEncryptionService:
    """Tests for token encryption."""

    def test_encrypt_decrypt(self):
        """Verify a token decrypts to the original and is not stored as-is."""
        service = EncryptionService(key=EncryptionService.generate_key())
        encrypted = service.encrypt("ya29.a0-token")

        assert encrypted != "ya29.a0-token"
        assert service.decrypt(encrypted) == "ya29.a0-token"

    def test_wrong_key_fails(self):
        """Verify a value encrypted under another key raises EncryptionError."""
        encrypted = EncryptionService(key=EncryptionService.generate_key()).encrypt("token")
        other = EncryptionService(key=EncryptionService.generate_key())

        with pytest.raises(EncryptionError):
            other.decrypt(encrypted)

    def test_invalid_key_format(self):
        """Verify a malformed key is rejected at construction."""
        with pytest.raises(EncryptionError) as exc_info:
            EncryptionService(key="not-a-fernet-key")
        assert "hint" in exc_info.value.context

    @pytest.mark.parametrize("method", ["encrypt", "decrypt"])
    def test_empty_values_rejected(self, method):
        """Verify empty input is an error rather than an empty ciphertext."""
        service = EncryptionService(key=EncryptionService.generate_key())
        with pytest.raises(EncryptionError):
            getattr(service, method)("")
