"""
Mailbox OAuth flow.

WHAT: The interactive authorization that connects a mailbox for a
country: build the authorize URL, wait for the user, exchange the code,
look up the mailbox, store the credential.

WHY: Every step can fail in a way the administrator needs to tell apart:
- the provider is not configured (offer setup)
- the user closed the popup (nothing to fix)
- the browser blocked the popup (allow popups)
- the provider refused the exchange or the identity lookup
Each of these becomes a distinct AuthFailureReason on one result type.

HOW: begin() creates a PKCE (S256) request and parks it in Redis through
PendingAuthorizationStore, keyed by state, so any worker can finish it.
complete() takes the provider's redirect, matches the state and runs
the exchange. authenticate() chains the two around an
AuthorizationPrompt supplied by the host UI.
"""

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Protocol

from casenotify.core.exceptions import (
    AUTH_FAILURE_MESSAGES,
    AuthenticationError,
    AuthFailureReason,
    ConfigurationError,
    TransientNetworkError,
)
from casenotify.models.audit_log import AuditAction
from casenotify.models.email_credential import MailProvider
from casenotify.schemas.admin_email import AdminEmailCredential
from casenotify.schemas.credential import (
    ConnectionAction,
    Credential,
    CredentialStatus,
    OAuthCallback,
)
from casenotify.services.admin_email_service import AdminEmailService
from casenotify.services.audit import AuditService
from casenotify.services.credential_store import CredentialStore
from casenotify.services.mail_providers import ClientFactory, get_provider_client
from casenotify.services.pending_authorizations import (
    AuthorizationRequest,
    PendingAuthorizationStore,
)
from casenotify.services.token_lifecycle import TokenLifecycleManager


logger = logging.getLogger(__name__)


PKCE_VERIFIER_LENGTH = 128
_PKCE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

# OAuth error codes a provider sends back when the user declines
_USER_CANCELLED_ERRORS = {"access_denied", "user_cancelled", "consent_required"}


def generate_code_verifier(length: int = PKCE_VERIFIER_LENGTH) -> str:
    return "".join(secrets.choice(_PKCE_ALPHABET) for _ in range(length))


def code_challenge_for(verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class PopupBlockedError(Exception):
    """Raised by an AuthorizationPrompt when the browser refused to open the popup."""


class AuthorizationPrompt(Protocol):
    """
    Host-UI hook that shows the authorize URL and waits for the redirect.

    May wait indefinitely; the host decides on any timeout. Returns the
    redirect parameters (a provider ``error`` such as access_denied means
    the user cancelled) or raises PopupBlockedError.
    """

    async def present(self, request: AuthorizationRequest) -> OAuthCallback:
        ...


@dataclass
class AuthenticationResult:
    """Outcome of one authorization attempt: a credential, or a reason it failed."""

    country: str
    provider: MailProvider
    credential: Optional[Credential] = None
    reason: Optional[AuthFailureReason] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.credential is not None

    @classmethod
    def failed(
        cls, country: str, provider: MailProvider, reason: AuthFailureReason, message: Optional[str] = None
    ) -> "AuthenticationResult":
        return cls(
            country=country,
            provider=provider,
            reason=reason,
            message=message or AUTH_FAILURE_MESSAGES[reason],
        )


class OAuthFlow:
    """
    Orchestrates mailbox authorization for a country.

    Example:
        flow = OAuthFlow(store, pending=PendingAuthorizationStore(await get_redis()))
        result = await flow.authenticate("Singapore", MailProvider.MICROSOFT, prompt)
        if not result.ok:
            show(result.message)
    """

    def __init__(
        self,
        store: CredentialStore,
        pending: PendingAuthorizationStore,
        admin_service: Optional[AdminEmailService] = None,
        client_factory: ClientFactory = get_provider_client,
        audit: Optional[AuditService] = None,
    ):
        self.store = store
        self.pending = pending
        self.admin_service = admin_service
        self.client_factory = client_factory
        self.audit = audit or AuditService(store.session)
        self.lifecycle = TokenLifecycleManager(store, client_factory=client_factory)

    async def begin(
        self, country: str, provider: MailProvider, actor: Optional[str] = None
    ) -> AuthorizationRequest:
        """
        Start an authorization.

        Raises:
            ConfigurationError: Provider has no client id (never retried)
            TransientNetworkError: Pending authorization could not be stored
        """
        provider = MailProvider(provider)
        client = self.client_factory(provider)
        client.require_configured()

        state = secrets.token_urlsafe(32)
        verifier = generate_code_verifier()
        request = AuthorizationRequest(
            state=state,
            country=country,
            provider=provider,
            authorization_url=client.build_authorization_url(state, code_challenge_for(verifier)),
            code_verifier=verifier,
            actor=actor,
        )
        await self.pending.save(request)
        logger.info(f"Started {provider.value} authorization for {country}")
        return request

    async def complete(self, callback: OAuthCallback) -> AuthenticationResult:
        """
        Finish an authorization from the provider's redirect.

        Raises:
            AuthenticationError: The state matches no pending request
                (unknown, expired or already used)
        """
        request = await self.pending.take(callback.state)
        if request is None:
            raise AuthenticationError(reason=AuthFailureReason.STATE_MISMATCH)

        country, provider = request.country, request.provider

        if callback.error or not callback.code:
            if callback.error and callback.error.lower() not in _USER_CANCELLED_ERRORS:
                logger.warning(f"{provider.value} authorization for {country} returned {callback.error}")
                return AuthenticationResult.failed(
                    country, provider, AuthFailureReason.EXCHANGE_FAILED,
                    callback.error_description or None,
                )
            logger.info(f"{provider.value} authorization for {country} cancelled by user")
            return AuthenticationResult.failed(country, provider, AuthFailureReason.CANCELLED)

        client = self.client_factory(provider)
        try:
            tokens = await client.exchange_authorization_code(callback.code, request.code_verifier)
        except ConfigurationError:
            return AuthenticationResult.failed(country, provider, AuthFailureReason.NOT_CONFIGURED)
        except (AuthenticationError, TransientNetworkError) as e:
            logger.warning(f"Code exchange failed for {country}/{provider.value}: {e.message}")
            return AuthenticationResult.failed(country, provider, AuthFailureReason.EXCHANGE_FAILED)

        try:
            identity = await client.fetch_identity(tokens.access_token)
        except (AuthenticationError, TransientNetworkError) as e:
            logger.warning(f"Identity lookup failed for {country}/{provider.value}: {e.message}")
            return AuthenticationResult.failed(country, provider, AuthFailureReason.USERINFO_FAILED)

        credential = Credential(
            country=country,
            provider=provider,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            mailbox=identity,
            display_name=identity.display_name,
        )
        await self.store.save(credential)
        await self._promote_if_active(credential, client.client_id, request.actor)
        await self.audit.log_event(
            AuditAction.MAILBOX_CONNECTED,
            request.actor,
            country,
            {"provider": provider.value, "mailbox": identity.address},
        )
        return AuthenticationResult(country=country, provider=provider, credential=credential)

    async def authenticate(
        self,
        country: str,
        provider: MailProvider,
        prompt: AuthorizationPrompt,
        actor: Optional[str] = None,
    ) -> AuthenticationResult:
        """
        Run the whole interactive flow as one awaited sequence.

        Never raises for user-facing failures; every branch becomes an
        AuthenticationResult with a reason.
        """
        provider = MailProvider(provider)
        try:
            request = await self.begin(country, provider, actor)
        except ConfigurationError as e:
            return AuthenticationResult.failed(
                country, provider, AuthFailureReason.NOT_CONFIGURED, e.message
            )

        try:
            callback = await prompt.present(request)
        except PopupBlockedError:
            await self.pending.discard(request.state)
            return AuthenticationResult.failed(country, provider, AuthFailureReason.POPUP_BLOCKED)

        try:
            return await self.complete(callback)
        except AuthenticationError as e:
            return AuthenticationResult.failed(country, provider, e.reason, e.message)

    async def _promote_if_active(
        self, credential: Credential, client_id: Optional[str], actor: Optional[str]
    ) -> None:
        """
        Make the new credential the country's active one when it belongs
        to the active provider (or when no provider is active yet).

        Raises:
            DatabaseError: The admin credential could not be stored
        """
        active = await self.store.get_active_provider(credential.country)
        if active is None:
            await self.store.set_active_provider(credential.country, credential.provider)
            active = credential.provider
        if active != credential.provider or self.admin_service is None:
            return

        promoted = AdminEmailCredential(
            country=credential.country,
            provider=credential.provider,
            client_id=client_id or "",
            tenant_id=getattr(self.client_factory(credential.provider), "tenant_id", None),
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            expires_at=credential.expires_at,
            from_email=credential.mailbox.address,
            from_name=credential.display_name or credential.mailbox.address,
        )
        await self.admin_service.set_admin_email_config(credential.country, promoted, actor)
        logger.info(
            f"Promoted {credential.provider.value} mailbox to active credential for {credential.country}"
        )

    async def check_status(self, country: str, provider: MailProvider) -> CredentialStatus:
        """
        Connection status of one provider for the console badge.

        Runs the full token lifecycle check, so an expired token may be
        refreshed and a revoked one cleared as a side effect.
        """
        provider = MailProvider(provider)
        configured = self.client_factory(provider).is_configured
        is_active = await self.store.get_active_provider(country) == provider
        status = CredentialStatus(
            country=country,
            provider=provider,
            configured=configured,
            connected=False,
            usable=False,
            is_active_provider=is_active,
        )
        if not configured:
            status.action = ConnectionAction.SETUP
            return status

        credential = await self.store.get(country, provider)
        if credential is None:
            status.action = ConnectionAction.CONNECT
            return status

        check = await self.lifecycle.check(credential)
        current = check.credential or credential
        status.connected = True
        status.usable = check.usable
        status.mailbox = current.mailbox
        status.expires_at = current.expires_at
        if not check.usable:
            status.action = ConnectionAction.RECONNECT
        return status

    async def disconnect(
        self, country: str, provider: MailProvider, actor: Optional[str] = None
    ) -> bool:
        """
        Remove a connected mailbox.

        Clears the active-provider setting when it pointed at this provider.
        The admin credential is left alone; it is removed explicitly.
        """
        provider = MailProvider(provider)
        removed = await self.store.remove(country, provider)
        if await self.store.get_active_provider(country) == provider:
            await self.store.clear_active_provider(country)
        if removed:
            await self.audit.log_event(
                AuditAction.MAILBOX_DISCONNECTED, actor, country, {"provider": provider.value}
            )
        return removed
