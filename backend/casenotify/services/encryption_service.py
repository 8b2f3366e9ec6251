"""
Encryption service for mailbox tokens at rest.

WHAT: Symmetric encryption using Fernet for OAuth access and refresh tokens.

WHY: A stored refresh token can send mail as a hospital's mailbox for
months. Tokens are encrypted before they reach the database so a leaked
backup is not a leaked mailbox.

HOW: Fernet (from the cryptography library) gives authenticated
encryption with a single URL-safe base64 key from ENCRYPTION_KEY.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from casenotify.core.config import settings
from casenotify.core.exceptions import EncryptionError


logger = logging.getLogger(__name__)


class EncryptionService:
    """
    Encrypts and decrypts token strings.

    Security notes:
    - Never log plaintext values
    - Invalid ciphertext raises EncryptionError (no silent failures)

    Example:
        service = EncryptionService()
        encrypted = service.encrypt("eyJ0eXAi...")
        decrypted = service.decrypt(encrypted)
    """

    def __init__(self, key: Optional[str] = None):
        """
        Args:
            key: Optional Fernet key. Defaults to settings.ENCRYPTION_KEY.

        Raises:
            EncryptionError: If key is missing or invalid.
        """
        encryption_key = key or settings.ENCRYPTION_KEY
        if not encryption_key:
            logger.error("Encryption key not configured")
            raise EncryptionError(
                message="Encryption key not configured",
                hint="Set ENCRYPTION_KEY environment variable",
            )

        try:
            self._fernet = Fernet(encryption_key.encode())
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid encryption key format: {type(e).__name__}")
            raise EncryptionError(
                message="Invalid encryption key format",
                hint="Key must be 32 bytes, URL-safe base64-encoded",
            ) from e

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext string.

        Raises:
            EncryptionError: If the value is empty.
        """
        if not plaintext:
            raise EncryptionError(message="Cannot encrypt empty value")
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a Fernet ciphertext.

        Raises:
            EncryptionError: If the value is empty, corrupted, or was
                encrypted with a different key.
        """
        if not ciphertext:
            raise EncryptionError(message="Cannot decrypt empty value")

        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            logger.warning("Decryption failed: invalid token or wrong key")
            raise EncryptionError(
                message="Failed to decrypt data",
                error="Invalid token - data may be corrupted or key changed",
            ) from e

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key (for setup and tests)."""
        return Fernet.generate_key().decode()


# =============================================================================
# Module-level convenience functions
# =============================================================================

_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """Get or create the process-wide encryption service."""
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service
