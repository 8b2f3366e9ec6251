"""
FastAPI dependencies for authentication, authorization and services.

WHY: Every console route needs the same actor check and the same
service wiring (the fallback cache and directory from app.state, Redis
for pending authorizations, one session per request).
Keeping both here means routers only declare what they use.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.core.auth import verify_token
from casenotify.core.exceptions import AuthenticationError, AuthorizationError
from casenotify.core.redis_client import get_redis
from casenotify.db.session import get_db
from casenotify.services.admin_email_service import AdminEmailService
from casenotify.services.credential_store import CredentialStore
from casenotify.services.fallback_cache import BoundedTTLCache
from casenotify.services.mail_providers import ClientFactory, get_provider_client
from casenotify.services.notification_dispatcher import (
    CredentialResolver,
    NotificationDispatcher,
)
from casenotify.services.notification_rules import NotificationRuleService
from casenotify.services.oauth_flow import OAuthFlow
from casenotify.services.pending_authorizations import PendingAuthorizationStore
from casenotify.services.recipient_resolver import RecipientResolver


# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer()

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Actor:
    """Console user making the request, as named by the bearer token."""

    id: str
    role: Optional[str] = None
    country: Optional[str] = None


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    Read the actor from the case-booking application's JWT.

    Raises:
        AuthenticationError: Token invalid, expired or without a subject
    """
    payload = verify_token(credentials.credentials)
    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError(message="Invalid token: missing subject")
    return Actor(id=str(subject), role=payload.get("role"), country=payload.get("country"))


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """
    Raises:
        AuthorizationError: The actor is not an administrator
    """
    if actor.role != ADMIN_ROLE:
        raise AuthorizationError(
            message="Administrator role required",
            actor=actor.id,
            role=actor.role,
        )
    return actor


# ============================================================================
# Services
# ============================================================================


def get_client_factory() -> ClientFactory:
    """Mail provider client factory; overridden in tests."""
    return get_provider_client


def get_fallback_cache(request: Request) -> BoundedTTLCache:
    return request.app.state.fallback_cache


def get_admin_email_service(
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
    cache: BoundedTTLCache = Depends(get_fallback_cache),
) -> AdminEmailService:
    return AdminEmailService(db, client_factory=client_factory, cache=cache)


def get_credential_store(
    db: AsyncSession = Depends(get_db),
    cache: BoundedTTLCache = Depends(get_fallback_cache),
) -> CredentialStore:
    return CredentialStore(db, cache=cache)


async def get_pending_authorizations() -> PendingAuthorizationStore:
    """Pending OAuth authorizations in Redis; overridden in tests."""
    return PendingAuthorizationStore(await get_redis())


def get_oauth_flow(
    store: CredentialStore = Depends(get_credential_store),
    pending: PendingAuthorizationStore = Depends(get_pending_authorizations),
    admin_service: AdminEmailService = Depends(get_admin_email_service),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> OAuthFlow:
    return OAuthFlow(
        store,
        pending=pending,
        admin_service=admin_service,
        client_factory=client_factory,
    )


def get_rule_service(
    db: AsyncSession = Depends(get_db),
    cache: BoundedTTLCache = Depends(get_fallback_cache),
) -> NotificationRuleService:
    return NotificationRuleService(db, cache=cache)


def get_dispatcher(
    request: Request,
    rules: NotificationRuleService = Depends(get_rule_service),
    store: CredentialStore = Depends(get_credential_store),
    admin_service: AdminEmailService = Depends(get_admin_email_service),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> NotificationDispatcher:
    return NotificationDispatcher(
        rules,
        RecipientResolver(request.app.state.directory),
        CredentialResolver(admin_service, store, client_factory=client_factory),
    )
