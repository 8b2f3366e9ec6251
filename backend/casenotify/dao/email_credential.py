"""
Email Credential Data Access Object.

WHY: Keeps token encryption in one place. Services hand plaintext tokens
to this DAO and get plaintext back; nothing above it ever sees the
encrypted columns.

SECURITY: Tokens are encrypted with Fernet before storage and decrypted
only when a caller asks for them. Never log decrypted values.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.dao.base import BaseDAO
from casenotify.models.email_credential import EmailCredential, MailProvider
from casenotify.services.encryption_service import EncryptionService, get_encryption_service


class EmailCredentialDAO(BaseDAO[EmailCredential]):
    """Data Access Object for per-user mailbox credentials."""

    def __init__(self, session: AsyncSession, encryption: Optional[EncryptionService] = None):
        super().__init__(EmailCredential, session)
        self._encryption = encryption or get_encryption_service()

    async def get_by_country_and_provider(
        self, country: str, provider: MailProvider
    ) -> Optional[EmailCredential]:
        """Find the credential for a (country, provider) pair."""
        return await self.get_one(country=country, provider=provider)

    async def get_by_country(self, country: str) -> List[EmailCredential]:
        """All provider credentials stored for a country."""
        return await self.get_all(country=country)

    async def upsert(
        self,
        country: str,
        provider: MailProvider,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
        mailbox_address: str,
        mailbox_name: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> EmailCredential:
        """
        Store a credential, superseding any existing one for the pair.

        WHY: Re-authorization replaces every field. A refresh token from
        an older grant must not survive next to a newer access token.
        """
        values = dict(
            access_token_encrypted=self._encryption.encrypt(access_token),
            refresh_token_encrypted=(
                self._encryption.encrypt(refresh_token) if refresh_token else None
            ),
            expires_at=expires_at,
            mailbox_address=mailbox_address,
            mailbox_name=mailbox_name,
            display_name=display_name,
        )

        existing = await self.get_by_country_and_provider(country, provider)
        if existing:
            return await self.update(existing, **values)
        return await self.create(country=country, provider=provider, **values)

    async def update_tokens(
        self,
        credential: EmailCredential,
        access_token: str,
        expires_at: datetime,
        refresh_token: Optional[str] = None,
    ) -> EmailCredential:
        """
        Update tokens after a refresh.

        Providers may omit the refresh token on refresh; the stored one
        is kept in that case.
        """
        values = dict(
            access_token_encrypted=self._encryption.encrypt(access_token),
            expires_at=expires_at,
        )
        if refresh_token:
            values["refresh_token_encrypted"] = self._encryption.encrypt(refresh_token)
        return await self.update(credential, **values)

    async def delete_by_country_and_provider(self, country: str, provider: MailProvider) -> bool:
        """Remove a credential. Returns False if none was stored."""
        credential = await self.get_by_country_and_provider(country, provider)
        if not credential:
            return False
        await self.delete(credential)
        return True

    def get_decrypted_access_token(self, credential: EmailCredential) -> str:
        return self._encryption.decrypt(credential.access_token_encrypted)

    def get_decrypted_refresh_token(self, credential: EmailCredential) -> Optional[str]:
        if not credential.refresh_token_encrypted:
            return None
        return self._encryption.decrypt(credential.refresh_token_encrypted)
