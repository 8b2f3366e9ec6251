"""
Admin Email Service.

WHAT: Manages the centralized (admin) mail credential for each country:
set, get, remove, live test, listing configured countries and keeping
tokens fresh in the background.

WHY: Automated notifications must not depend on whichever console user
last connected a mailbox. One administrator-set credential per country
is the preferred source for every automated send; per-user credentials
are only the fallback while a country has none.

HOW: AdminEmailConfigDAO for storage (tokens encrypted), a
TokenLifecycleManager bound to this service for refresh, provider
clients for the live test, AuditService for the trail. Reads are
written through to the injected BoundedTTLCache, which answers for a
country while the database is unreachable.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.core.config import settings
from casenotify.core.exceptions import (
    DatabaseError,
    MailProviderError,
    ProviderFailure,
    TransientNetworkError,
)
from casenotify.dao.admin_email_config import AdminEmailConfigDAO
from casenotify.models.admin_email_config import AdminEmailConfig
from casenotify.models.audit_log import AuditAction
from casenotify.models.base import utcnow
from casenotify.schemas.admin_email import AdminEmailCredential, AdminEmailTestResult
from casenotify.schemas.credential import ConnectionAction, TokenSet
from casenotify.services.audit import AuditService, SYSTEM_ACTOR
from casenotify.services.email_layout_service import EmailLayoutService
from casenotify.services.encryption_service import EncryptionService
from casenotify.services.fallback_cache import BoundedTTLCache
from casenotify.services.mail_providers import ClientFactory, get_provider_client
from casenotify.services.token_lifecycle import TokenLifecycleManager


logger = logging.getLogger(__name__)


FAILURE_ACTIONS = {
    ProviderFailure.EXPIRED: ConnectionAction.RECONNECT,
    ProviderFailure.PERMISSION_DENIED: ConnectionAction.RECONSENT,
}

FAILURE_MESSAGES = {
    ProviderFailure.EXPIRED: "Access token is expired or invalid. Please re-authenticate the admin mailbox.",
    ProviderFailure.PERMISSION_DENIED: (
        "The mailbox did not grant permission to send mail. Re-authorize and accept the Mail.Send permission."
    ),
    ProviderFailure.NETWORK_ERROR: "The mail provider could not be reached. Try again shortly.",
    ProviderFailure.UNKNOWN: "The mail provider rejected the test email.",
}


class AdminEmailService:
    """
    Service for the per-country centralized mail credential.

    Example:
        service = AdminEmailService(db)
        await service.set_admin_email_config("Singapore", credential, actor="u-1")
        result = await service.test_admin_email_config("Singapore", "me@hospital.sg")
    """

    def __init__(
        self,
        session: AsyncSession,
        encryption: Optional[EncryptionService] = None,
        client_factory: ClientFactory = get_provider_client,
        layout: Optional[EmailLayoutService] = None,
        cache: Optional[BoundedTTLCache] = None,
    ):
        self.session = session
        self.dao = AdminEmailConfigDAO(session, encryption=encryption)
        self.audit = AuditService(session)
        self.client_factory = client_factory
        self.layout = layout or EmailLayoutService()
        self.lifecycle = TokenLifecycleManager(self, client_factory=client_factory)
        self._cache = cache

    @staticmethod
    def _cache_key(country: str):
        return ("admin_credential", country)

    def _forget(self, country: str) -> None:
        if self._cache is not None:
            self._cache.pop(self._cache_key(country))

    def _to_schema(self, row: AdminEmailConfig) -> AdminEmailCredential:
        return AdminEmailCredential(
            country=row.country,
            provider=row.provider,
            client_id=row.client_id,
            tenant_id=row.tenant_id,
            access_token=self.dao.get_decrypted_access_token(row),
            refresh_token=self.dao.get_decrypted_refresh_token(row),
            expires_at=row.expires_at,
            from_email=row.from_email,
            from_name=row.from_name,
        )

    async def set_admin_email_config(
        self,
        country: str,
        credentials: AdminEmailCredential,
        actor: Optional[str],
    ) -> None:
        """
        Create or replace the country's admin credential.

        Raises:
            DatabaseError: The write failed (the transaction must be rolled back)
        """
        try:
            await self.dao.upsert(
                country=country,
                provider=credentials.provider,
                client_id=credentials.client_id,
                tenant_id=credentials.tenant_id,
                access_token=credentials.access_token,
                refresh_token=credentials.refresh_token,
                expires_at=credentials.expires_at,
                from_email=credentials.from_email,
                from_name=credentials.from_name,
                updated_by=actor,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to store admin email config for {country}: {e}")
            raise DatabaseError(message="Failed to store admin email configuration", country=country) from e
        self._forget(country)

        await self.audit.log_event(
            AuditAction.ADMIN_EMAIL_CONFIG_SET,
            actor,
            country,
            {"provider": credentials.provider.value, "from_email": credentials.from_email},
        )
        logger.info(f"Admin email config set for {country} ({credentials.provider.value})")

    async def get_admin_email_config(self, country: str) -> Optional[AdminEmailCredential]:
        """
        The active admin credential for a country.

        Returns:
            The credential, or None when the country has none (not an error)

        Raises:
            DatabaseError: Database unreachable and nothing cached for the country
        """
        key = self._cache_key(country)
        try:
            row = await self.dao.get_by_country(country)
        except SQLAlchemyError as e:
            if self._cache is not None and key in self._cache:
                logger.warning(f"Admin credential lookup failed for {country}; serving cached value")
                return self._cache.get(key)
            raise DatabaseError(message="Failed to load admin email configuration", country=country) from e

        credential = self._to_schema(row) if row is not None and row.is_active else None
        # A country without an admin credential is cached as None
        if self._cache is not None:
            self._cache.set(key, credential)
        return credential

    async def remove_admin_email_config(self, country: str, actor: Optional[str] = None) -> bool:
        """Delete the country's admin credential. Returns False if there was none."""
        self._forget(country)
        removed = await self.dao.delete_by_country(country)
        if removed:
            await self.audit.log_event(AuditAction.ADMIN_EMAIL_CONFIG_REMOVED, actor, country)
            logger.info(f"Admin email config removed for {country}")
        return removed

    async def get_configured_countries(self) -> List[str]:
        return [row.country for row in await self.dao.get_active()]

    async def test_admin_email_config(
        self,
        country: str,
        test_address: str,
        actor: Optional[str] = None,
    ) -> AdminEmailTestResult:
        """
        Send a live test email with the country's admin credential.

        Provider failures are reported as data (failure + action), not
        raised, so the console can show the administrator what to do.
        """
        credential = await self.get_admin_email_config(country)
        if credential is None:
            return AdminEmailTestResult(
                success=False,
                error=f"No admin email configuration found for {country}",
                action=ConnectionAction.SETUP,
            )

        usable = await self.ensure_fresh(credential)
        if usable is None:
            result = AdminEmailTestResult(
                success=False,
                error=FAILURE_MESSAGES[ProviderFailure.EXPIRED],
                failure=ProviderFailure.EXPIRED,
                action=ConnectionAction.RECONNECT,
            )
        else:
            result = await self._send_test(usable, test_address)

        await self.audit.log_event(
            AuditAction.ADMIN_EMAIL_CONFIG_TESTED,
            actor,
            country,
            {
                "success": result.success,
                "failure": result.failure.value if result.failure else None,
            },
        )
        return result

    async def _send_test(
        self, credential: AdminEmailCredential, test_address: str
    ) -> AdminEmailTestResult:
        subject, html = self.layout.render_admin_test(
            country=credential.country,
            from_email=credential.from_email,
            from_name=credential.from_name,
            provider=credential.provider.value,
        )
        client = self.client_factory(
            credential.provider, client_id=credential.client_id, tenant_id=credential.tenant_id
        )
        try:
            await client.send_mail(
                credential.access_token,
                [test_address],
                subject,
                html,
                from_email=credential.from_email,
                from_name=credential.from_name,
            )
        except TransientNetworkError:
            failure = ProviderFailure.NETWORK_ERROR
        except MailProviderError as e:
            failure = e.failure
        else:
            logger.info(f"Admin test email sent for {credential.country}")
            return AdminEmailTestResult(success=True)

        logger.warning(f"Admin test email failed for {credential.country}: {failure.value}")
        return AdminEmailTestResult(
            success=False,
            error=FAILURE_MESSAGES[failure],
            failure=failure,
            action=FAILURE_ACTIONS.get(failure),
        )

    # ------------------------------------------------------------------
    # Token freshness
    # ------------------------------------------------------------------

    async def ensure_fresh(self, credential: AdminEmailCredential) -> Optional[AdminEmailCredential]:
        """
        Return a usable admin credential, refreshing it if needed.

        Skips the online check; admin tokens are exercised by every send
        and a rejected send already reports the failure.
        """
        if not self.lifecycle.is_locally_expired(credential):
            return credential
        return await self.lifecycle.refresh(credential)

    async def refresh_expiring_credentials(self) -> int:
        """
        Refresh every admin credential expiring within the refresh window.

        Run by the background scheduler.

        Returns:
            Number of credentials refreshed
        """
        cutoff = utcnow() + timedelta(seconds=settings.ADMIN_TOKEN_REFRESH_WINDOW_SECONDS)
        refreshed = 0
        for row in await self.dao.get_expiring_before(cutoff):
            credential = self._to_schema(row)
            if not credential.refresh_token:
                logger.warning(f"Admin credential for {row.country} expiring with no refresh token")
                continue
            if await self.lifecycle.refresh(credential) is not None:
                refreshed += 1
        return refreshed

    # TokenPersistence protocol

    async def save_refreshed(
        self, credential: AdminEmailCredential, tokens: TokenSet
    ) -> AdminEmailCredential:
        row = await self.dao.get_by_country(credential.country)
        if row is not None:
            await self.dao.update_tokens(
                row,
                access_token=tokens.access_token,
                expires_at=tokens.expires_at,
                refresh_token=tokens.refresh_token,
            )
        refreshed = credential.with_tokens(tokens)
        if row is not None and self._cache is not None:
            self._cache.set(self._cache_key(credential.country), refreshed)
        return refreshed

    async def clear(self, credential: AdminEmailCredential) -> None:
        await self.remove_admin_email_config(credential.country, actor=SYSTEM_ACTOR)
