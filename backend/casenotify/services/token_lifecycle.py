"""
Token Lifecycle Manager.

WHAT: Decides whether a stored mailbox credential can be used right now,
refreshing it or clearing it along the way.

WHY: A token that looks fine locally may have been revoked by the
mailbox owner, and an expired one can often be refreshed silently. The
console status badge and the delivery path both need the same answer.

HOW:
1. Locally expired (now >= expires_at - skew):
   - with a refresh token, try a refresh and persist the result
   - without one, the credential is unusable
2. Not locally expired: ask the provider (validate_online).
   - explicit rejection: clear the stored credential, unusable
   - network failure: keep the local verdict, unless
     STRICT_ONLINE_VALIDATION asks us to fail closed

Refresh failures and network errors are logged, never raised, from
check() and is_usable(). require_usable() is the raising variant.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

from casenotify.core.config import settings
from casenotify.core.exceptions import (
    AuthenticationError,
    AuthFailureReason,
    ConfigurationError,
    RevocationError,
    TransientNetworkError,
)
from casenotify.models.base import utcnow
from casenotify.schemas.credential import TokenSet
from casenotify.services.mail_providers import (
    ClientFactory,
    MailProviderClient,
    get_provider_client,
)


logger = logging.getLogger(__name__)


class TokenPersistence(Protocol):
    """Where refreshed tokens are written and revoked credentials are cleared."""

    async def save_refreshed(self, credential: Any, tokens: TokenSet) -> Any:
        ...

    async def clear(self, credential: Any) -> None:
        ...


class TokenState(str, enum.Enum):
    VALID = "valid"
    REFRESHED = "refreshed"
    UNVERIFIED = "unverified"  # provider unreachable, local verdict kept
    EXPIRED = "expired"
    REFRESH_FAILED = "refresh_failed"
    REVOKED = "revoked"
    UNREACHABLE = "unreachable"  # provider unreachable under STRICT_ONLINE_VALIDATION


USABLE_STATES = {TokenState.VALID, TokenState.REFRESHED, TokenState.UNVERIFIED}


@dataclass
class TokenCheck:
    """Result of checking one credential; ``credential`` is the one to use, if any."""

    state: TokenState
    credential: Optional[Any] = None

    @property
    def usable(self) -> bool:
        return self.state in USABLE_STATES


class TokenLifecycleManager:
    """
    Usability checks for per-user and admin credentials.

    Works on any credential model with provider, access_token,
    refresh_token and expires_at; admin credentials additionally carry
    client_id and tenant_id, which are used to build the provider client.
    """

    def __init__(
        self,
        persistence: TokenPersistence,
        client_factory: ClientFactory = get_provider_client,
        skew_seconds: Optional[int] = None,
        fail_closed: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.persistence = persistence
        self.client_factory = client_factory
        self.skew = timedelta(
            seconds=settings.TOKEN_EXPIRY_SKEW_SECONDS if skew_seconds is None else skew_seconds
        )
        self.fail_closed = (
            settings.STRICT_ONLINE_VALIDATION if fail_closed is None else fail_closed
        )
        self.clock = clock

    def client_for(self, credential: Any) -> MailProviderClient:
        return self.client_factory(
            credential.provider,
            client_id=getattr(credential, "client_id", None),
            tenant_id=getattr(credential, "tenant_id", None),
        )

    def is_locally_expired(self, credential: Any) -> bool:
        return self.clock() >= credential.expires_at - self.skew

    async def is_usable(self, credential: Any) -> bool:
        return (await self.check(credential)).usable

    async def check(self, credential: Any) -> TokenCheck:
        """Run the full expiry / refresh / online-validation sequence."""
        label = f"{credential.country}/{credential.provider.value}"

        if self.is_locally_expired(credential):
            if not credential.refresh_token:
                logger.info(f"Credential {label} expired and has no refresh token")
                return TokenCheck(TokenState.EXPIRED)
            refreshed = await self.refresh(credential)
            if refreshed is None:
                return TokenCheck(TokenState.REFRESH_FAILED)
            return TokenCheck(TokenState.REFRESHED, refreshed)

        try:
            accepted = await self.client_for(credential).validate_online(credential.access_token)
        except TransientNetworkError:
            if self.fail_closed:
                logger.warning(f"Online validation unavailable for {label}; failing closed")
                return TokenCheck(TokenState.UNREACHABLE)
            logger.info(f"Online validation unavailable for {label}; using local expiry")
            return TokenCheck(TokenState.UNVERIFIED, credential)

        if not accepted:
            logger.warning(f"Provider rejected credential {label}; clearing it")
            await self.persistence.clear(credential)
            return TokenCheck(TokenState.REVOKED)

        return TokenCheck(TokenState.VALID, credential)

    async def refresh(self, credential: Any) -> Optional[Any]:
        """
        Refresh and persist a credential.

        Returns:
            The refreshed credential, or None if the refresh failed
        """
        label = f"{credential.country}/{credential.provider.value}"
        if not credential.refresh_token:
            return None
        try:
            tokens = await self.client_for(credential).refresh_token(credential.refresh_token)
        except (AuthenticationError, TransientNetworkError, ConfigurationError) as e:
            logger.warning(f"Token refresh failed for {label}: {e.message}")
            return None

        refreshed = await self.persistence.save_refreshed(credential, tokens)
        logger.info(f"Refreshed credential {label}, expires {tokens.expires_at.isoformat()}")
        return refreshed

    async def require_usable(self, credential: Any) -> Any:
        """
        Like check(), but raise instead of returning an unusable result.

        Raises:
            RevocationError: The provider rejected the token (it has been cleared)
            TransientNetworkError: Provider unreachable and failing closed
            AuthenticationError: Expired and could not be refreshed
        """
        result = await self.check(credential)
        if result.usable:
            return result.credential
        if result.state == TokenState.REVOKED:
            raise RevocationError(
                country=credential.country, provider=credential.provider.value
            )
        if result.state == TokenState.UNREACHABLE:
            raise TransientNetworkError(
                country=credential.country, provider=credential.provider.value
            )
        raise AuthenticationError(
            reason=AuthFailureReason.REFRESH_FAILED,
            country=credential.country,
            provider=credential.provider.value,
        )
