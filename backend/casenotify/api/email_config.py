"""
Email Configuration API endpoints.

WHAT: REST API the configuration console uses to connect mailboxes and
manage the per-country admin credential.

WHY: Administrators need to:
1. See which providers are connected and what to do next
2. Connect or disconnect a mailbox through OAuth
3. Set, test and remove the centralized credential used for automated sends

HOW: FastAPI router over OAuthFlow and AdminEmailService. Every route
requires an admin bearer token; the token subject is recorded as the actor.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.core.deps import (
    Actor,
    get_admin_email_service,
    get_db,
    get_oauth_flow,
    require_admin,
)
from casenotify.core.exceptions import ResourceNotFoundError
from casenotify.models.email_credential import MailProvider
from casenotify.schemas.admin_email import (
    AdminEmailConfigResponse,
    AdminEmailConfigUpdate,
    AdminEmailCredential,
    AdminEmailTestRequest,
    AdminEmailTestResult,
)
from casenotify.schemas.credential import (
    AuthenticationOutcome,
    AuthorizationStart,
    CredentialStatus,
    OAuthCallback,
)
from casenotify.services.admin_email_service import AdminEmailService
from casenotify.services.oauth_flow import OAuthFlow


router = APIRouter(prefix="/email-config", tags=["email-config"])


def _admin_response(credential: AdminEmailCredential) -> AdminEmailConfigResponse:
    return AdminEmailConfigResponse(
        country=credential.country,
        provider=credential.provider,
        client_id=credential.client_id,
        tenant_id=credential.tenant_id,
        from_email=credential.from_email,
        from_name=credential.from_name,
        expires_at=credential.expires_at,
    )


# =============================================================================
# Per-user mailbox connections
# =============================================================================


@router.get(
    "/{country}/providers",
    response_model=List[CredentialStatus],
    summary="Mailbox connection status",
)
async def list_provider_status(
    country: str = Path(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    flow: OAuthFlow = Depends(get_oauth_flow),
    actor: Actor = Depends(require_admin),
) -> List[CredentialStatus]:
    """
    Status of every supported provider for a country.

    Checking may refresh an expired token or clear a revoked one.
    """
    statuses = [await flow.check_status(country, provider) for provider in MailProvider]
    await db.commit()
    return statuses


@router.post(
    "/{country}/providers/{provider}/authorize",
    response_model=AuthorizationStart,
    summary="Start mailbox authorization",
)
async def start_authorization(
    provider: MailProvider,
    country: str = Path(..., min_length=1),
    flow: OAuthFlow = Depends(get_oauth_flow),
    actor: Actor = Depends(require_admin),
) -> AuthorizationStart:
    """
    Begin the OAuth flow; the console opens ``authorization_url`` in a popup.

    Returns 503 (ConfigurationError) when the provider has no client id.
    """
    request = await flow.begin(country, provider, actor=actor.id)
    return AuthorizationStart(authorization_url=request.authorization_url, state=request.state)


@router.post(
    "/oauth/callback",
    response_model=AuthenticationOutcome,
    summary="Complete mailbox authorization",
)
async def complete_authorization(
    callback: OAuthCallback,
    db: AsyncSession = Depends(get_db),
    flow: OAuthFlow = Depends(get_oauth_flow),
    actor: Actor = Depends(require_admin),
) -> AuthenticationOutcome:
    """
    Finish the OAuth flow with the parameters the provider redirected with.

    User cancellation and provider failures come back as ``ok: false``
    with a reason; an unknown state is a 401.
    """
    result = await flow.complete(callback)
    await db.commit()
    return AuthenticationOutcome(
        ok=result.ok,
        country=result.country,
        provider=result.provider,
        mailbox=result.credential.mailbox if result.credential else None,
        reason=result.reason.value if result.reason else None,
        message=result.message,
    )


@router.delete(
    "/{country}/providers/{provider}",
    status_code=204,
    summary="Disconnect mailbox",
)
async def disconnect_provider(
    provider: MailProvider,
    country: str = Path(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    flow: OAuthFlow = Depends(get_oauth_flow),
    actor: Actor = Depends(require_admin),
) -> None:
    if not await flow.disconnect(country, provider, actor=actor.id):
        raise ResourceNotFoundError(
            message=f"No {provider.value} mailbox connected for {country}",
            country=country,
        )
    await db.commit()


# =============================================================================
# Centralized (admin) credential
# =============================================================================


@router.get(
    "/admin/countries",
    response_model=List[str],
    summary="Countries with an admin credential",
)
async def list_configured_countries(
    service: AdminEmailService = Depends(get_admin_email_service),
    actor: Actor = Depends(require_admin),
) -> List[str]:
    return await service.get_configured_countries()


@router.get(
    "/{country}/admin",
    response_model=Optional[AdminEmailConfigResponse],
    summary="Get admin credential",
)
async def get_admin_config(
    country: str = Path(..., min_length=1),
    service: AdminEmailService = Depends(get_admin_email_service),
    actor: Actor = Depends(require_admin),
) -> Optional[AdminEmailConfigResponse]:
    """The country's admin credential, or null when it has none. Tokens are never returned."""
    credential = await service.get_admin_email_config(country)
    return _admin_response(credential) if credential else None


@router.put(
    "/{country}/admin",
    response_model=AdminEmailConfigResponse,
    summary="Set admin credential",
)
async def set_admin_config(
    body: AdminEmailConfigUpdate,
    country: str = Path(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    service: AdminEmailService = Depends(get_admin_email_service),
    actor: Actor = Depends(require_admin),
) -> AdminEmailConfigResponse:
    credential = AdminEmailCredential(country=country, **body.model_dump())
    await service.set_admin_email_config(country, credential, actor.id)
    await db.commit()
    return _admin_response(credential)


@router.delete(
    "/{country}/admin",
    status_code=204,
    summary="Remove admin credential",
)
async def remove_admin_config(
    country: str = Path(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    service: AdminEmailService = Depends(get_admin_email_service),
    actor: Actor = Depends(require_admin),
) -> None:
    if not await service.remove_admin_email_config(country, actor=actor.id):
        raise ResourceNotFoundError(
            message=f"No admin email configuration for {country}", country=country
        )
    await db.commit()


@router.post(
    "/{country}/admin/test",
    response_model=AdminEmailTestResult,
    summary="Send admin test email",
)
async def test_admin_config(
    body: AdminEmailTestRequest,
    country: str = Path(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    service: AdminEmailService = Depends(get_admin_email_service),
    actor: Actor = Depends(require_admin),
) -> AdminEmailTestResult:
    """
    Live send to ``test_address``.

    Failures are returned in the body (``failure`` and ``action``) rather
    than as an error status, so the console can show the next step.
    """
    result = await service.test_admin_email_config(country, body.test_address, actor=actor.id)
    await db.commit()
    return result
