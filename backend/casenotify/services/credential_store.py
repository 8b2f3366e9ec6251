"""
Credential Store.

WHAT: Durable per-country, per-provider mailbox credentials plus the
country's active provider setting.

WHY: The token lifecycle manager, the OAuth flow and the delivery path
all need the same view of "which mailbox can send for Singapore". This
service is that view; the encryption and table details stay in the DAOs.

HOW: Reads go through EmailCredentialDAO and are written through to an
injected BoundedTTLCache. If the database is unreachable, the last
known credential and active provider are served from the cache instead
of failing the send.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.core.exceptions import DatabaseError
from casenotify.dao.app_setting import AppSettingDAO
from casenotify.dao.email_credential import EmailCredentialDAO
from casenotify.models.app_setting import country_owner
from casenotify.models.email_credential import EmailCredential, MailProvider
from casenotify.schemas.credential import Credential, MailboxIdentity, TokenSet
from casenotify.services.encryption_service import EncryptionService
from casenotify.services.fallback_cache import BoundedTTLCache


logger = logging.getLogger(__name__)


ACTIVE_PROVIDER_SETTING = "active_email_provider"


class CredentialStore:
    """
    Per-user mailbox credentials, one per (country, provider).

    Example:
        store = CredentialStore(session, cache=app.state.fallback_cache)
        credential = await store.get("Singapore", MailProvider.MICROSOFT)
    """

    def __init__(
        self,
        session: AsyncSession,
        encryption: Optional[EncryptionService] = None,
        cache: Optional[BoundedTTLCache] = None,
    ):
        self.session = session
        self.dao = EmailCredentialDAO(session, encryption=encryption)
        self.settings_dao = AppSettingDAO(session)
        self._cache = cache

    @staticmethod
    def _cache_key(country: str, provider: MailProvider):
        return ("credential", country, MailProvider(provider).value)

    @staticmethod
    def _active_provider_key(country: str):
        return ("active_provider", country)

    def _to_schema(self, row: EmailCredential) -> Credential:
        return Credential(
            country=row.country,
            provider=row.provider,
            access_token=self.dao.get_decrypted_access_token(row),
            refresh_token=self.dao.get_decrypted_refresh_token(row),
            expires_at=row.expires_at,
            mailbox=MailboxIdentity(address=row.mailbox_address, display_name=row.mailbox_name),
            display_name=row.display_name,
        )

    def _remember(self, credential: Credential) -> None:
        if self._cache is not None:
            self._cache.set(self._cache_key(credential.country, credential.provider), credential)

    def _forget(self, country: str, provider: MailProvider) -> None:
        if self._cache is not None:
            self._cache.pop(self._cache_key(country, provider))

    async def get(self, country: str, provider: MailProvider) -> Optional[Credential]:
        """
        Load the credential for a (country, provider) pair.

        Returns:
            The credential, or None if none is stored

        Raises:
            DatabaseError: Database unreachable and nothing cached
        """
        try:
            row = await self.dao.get_by_country_and_provider(country, provider)
        except SQLAlchemyError as e:
            cached = self._cache.get(self._cache_key(country, provider)) if self._cache else None
            if cached is not None:
                logger.warning(
                    f"Credential lookup failed for {country}/{MailProvider(provider).value}; "
                    "serving cached credential"
                )
                return cached
            raise DatabaseError(message="Failed to load mailbox credential", country=country) from e

        if row is None:
            self._forget(country, provider)
            return None

        credential = self._to_schema(row)
        self._remember(credential)
        return credential

    async def list_for_country(self, country: str) -> List[Credential]:
        rows = await self.dao.get_by_country(country)
        return [self._to_schema(row) for row in rows]

    async def save(self, credential: Credential) -> Credential:
        """Persist a credential, superseding any stored one for the same pair."""
        await self.dao.upsert(
            country=credential.country,
            provider=credential.provider,
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            expires_at=credential.expires_at,
            mailbox_address=credential.mailbox.address,
            mailbox_name=credential.mailbox.display_name,
            display_name=credential.display_name,
        )
        self._remember(credential)
        logger.info(
            f"Stored {credential.provider.value} mailbox credential for {credential.country}"
        )
        return credential

    async def remove(self, country: str, provider: MailProvider) -> bool:
        """Delete a stored credential. Returns False if there was none."""
        self._forget(country, provider)
        removed = await self.dao.delete_by_country_and_provider(country, provider)
        if removed:
            logger.info(f"Removed {MailProvider(provider).value} mailbox credential for {country}")
        return removed

    # ------------------------------------------------------------------
    # TokenPersistence protocol (used by TokenLifecycleManager)
    # ------------------------------------------------------------------

    async def save_refreshed(self, credential: Credential, tokens: TokenSet) -> Credential:
        """Store refreshed tokens and return the updated credential."""
        refreshed = credential.with_tokens(tokens)
        row = await self.dao.get_by_country_and_provider(credential.country, credential.provider)
        if row is None:
            return await self.save(refreshed)
        await self.dao.update_tokens(
            row,
            access_token=tokens.access_token,
            expires_at=tokens.expires_at,
            refresh_token=tokens.refresh_token,
        )
        self._remember(refreshed)
        return refreshed

    async def clear(self, credential: Credential) -> None:
        await self.remove(credential.country, credential.provider)

    # ------------------------------------------------------------------
    # Active provider
    # ------------------------------------------------------------------

    async def get_active_provider(self, country: str) -> Optional[MailProvider]:
        """
        Raises:
            DatabaseError: Database unreachable and nothing cached for the country
        """
        key = self._active_provider_key(country)
        try:
            value = await self.settings_dao.get_value(country_owner(country), ACTIVE_PROVIDER_SETTING)
        except SQLAlchemyError as e:
            if self._cache is not None and key in self._cache:
                logger.warning(f"Active provider lookup failed for {country}; serving cached value")
                return self._cache.get(key)
            raise DatabaseError(message="Failed to load active provider", country=country) from e

        provider = None
        if value:
            try:
                provider = MailProvider(value)
            except ValueError:
                logger.warning(f"Ignoring unknown active provider {value!r} for {country}")
        if self._cache is not None:
            self._cache.set(key, provider)
        return provider

    async def set_active_provider(self, country: str, provider: MailProvider) -> None:
        if self._cache is not None:
            self._cache.pop(self._active_provider_key(country))
        await self.settings_dao.set_value(
            country_owner(country), ACTIVE_PROVIDER_SETTING, MailProvider(provider).value
        )

    async def clear_active_provider(self, country: str) -> bool:
        if self._cache is not None:
            self._cache.pop(self._active_provider_key(country))
        return await self.settings_dao.delete_value(country_owner(country), ACTIVE_PROVIDER_SETTING)
