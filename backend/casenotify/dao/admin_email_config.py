"""
Admin Email Config Data Access Object.

WHY: Same encryption boundary as EmailCredentialDAO, for the one
centralized credential each country may have.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.dao.base import BaseDAO
from casenotify.models.admin_email_config import AdminEmailConfig
from casenotify.models.email_credential import MailProvider
from casenotify.services.encryption_service import EncryptionService, get_encryption_service


class AdminEmailConfigDAO(BaseDAO[AdminEmailConfig]):
    """Data Access Object for centralized admin credentials."""

    def __init__(self, session: AsyncSession, encryption: Optional[EncryptionService] = None):
        super().__init__(AdminEmailConfig, session)
        self._encryption = encryption or get_encryption_service()

    async def get_by_country(self, country: str) -> Optional[AdminEmailConfig]:
        return await self.get_one(country=country)

    async def get_active(self) -> List[AdminEmailConfig]:
        """All active configs, ordered by country."""
        result = await self.session.execute(
            select(AdminEmailConfig)
            .where(AdminEmailConfig.is_active.is_(True))
            .order_by(AdminEmailConfig.country)
        )
        return list(result.scalars().all())

    async def get_expiring_before(self, cutoff: datetime) -> List[AdminEmailConfig]:
        """Active configs whose access token expires before ``cutoff``."""
        result = await self.session.execute(
            select(AdminEmailConfig).where(
                AdminEmailConfig.is_active.is_(True),
                AdminEmailConfig.expires_at < cutoff,
            )
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        country: str,
        provider: MailProvider,
        client_id: str,
        tenant_id: Optional[str],
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
        from_email: str,
        from_name: str,
        updated_by: Optional[str],
    ) -> AdminEmailConfig:
        """Create or fully replace the country's admin credential."""
        values = dict(
            provider=provider,
            client_id=client_id,
            tenant_id=tenant_id,
            access_token_encrypted=self._encryption.encrypt(access_token),
            refresh_token_encrypted=(
                self._encryption.encrypt(refresh_token) if refresh_token else None
            ),
            expires_at=expires_at,
            from_email=from_email,
            from_name=from_name,
            is_active=True,
            updated_by=updated_by,
        )

        existing = await self.get_by_country(country)
        if existing:
            return await self.update(existing, **values)
        return await self.create(country=country, **values)

    async def update_tokens(
        self,
        config: AdminEmailConfig,
        access_token: str,
        expires_at: datetime,
        refresh_token: Optional[str] = None,
    ) -> AdminEmailConfig:
        """Update tokens after a refresh, keeping the stored refresh token if none is returned."""
        values = dict(
            access_token_encrypted=self._encryption.encrypt(access_token),
            expires_at=expires_at,
        )
        if refresh_token:
            values["refresh_token_encrypted"] = self._encryption.encrypt(refresh_token)
        return await self.update(config, **values)

    async def delete_by_country(self, country: str) -> bool:
        config = await self.get_by_country(country)
        if not config:
            return False
        await self.delete(config)
        return True

    def get_decrypted_access_token(self, config: AdminEmailConfig) -> str:
        return self._encryption.decrypt(config.access_token_encrypted)

    def get_decrypted_refresh_token(self, config: AdminEmailConfig) -> Optional[str]:
        if not config.refresh_token_encrypted:
            return None
        return self._encryption.decrypt(config.refresh_token_encrypted)
