"""
Notification Dispatcher.

WHAT: The delivery path for a case status change: rule lookup, recipient
resolution, rendering, credential selection and the send itself.

WHY: A country can have a centralized (admin) credential, per-user
mailbox credentials, or both while it migrates. Automated sends must
use the admin credential whenever there is a usable one, and fall back
to the country's connected mailbox otherwise. Modelling the two as a
tagged ActiveCredential keeps that choice in one function.

HOW:
1. Rule for (country, status); disabled rules send nothing
2. RecipientResolver; an empty set sends nothing
3. TemplateRenderer, then the HTML layout
4. CredentialResolver.active_credential_for(country)
5. send_mail with up to SEND_MAX_ATTEMPTS attempts:
   - network errors back off exponentially (1s, 2s, 4s)
   - an expired token is refreshed once and the send retried
   - permission denied and unknown failures are final
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, Union

from casenotify.core.config import settings
from casenotify.core.exceptions import (
    MailProviderError,
    ProviderFailure,
    TransientNetworkError,
    ValidationError,
)
from casenotify.models.email_credential import MailProvider
from casenotify.schemas.admin_email import AdminEmailCredential
from casenotify.schemas.case import CaseSnapshot
from casenotify.schemas.credential import Credential
from casenotify.schemas.notification import DeliveryResult, DeliveryStatus
from casenotify.services.admin_email_service import AdminEmailService
from casenotify.services.credential_store import CredentialStore
from casenotify.services.email_layout_service import EmailLayoutService
from casenotify.services.mail_providers import (
    ClientFactory,
    MailProviderClient,
    get_provider_client,
)
from casenotify.services.notification_rules import NotificationRuleService, parse_status
from casenotify.services.recipient_resolver import RecipientResolver
from casenotify.services.template_renderer import TemplateRenderer
from casenotify.services.token_lifecycle import TokenLifecycleManager


logger = logging.getLogger(__name__)


class CredentialSource(str, enum.Enum):
    CENTRALIZED = "centralized"
    PER_USER = "per_user"


@dataclass(frozen=True)
class ActiveCredential:
    """The credential an automated send will use, tagged with where it came from."""

    source: CredentialSource
    credential: Union[AdminEmailCredential, Credential]

    @classmethod
    def centralized(cls, credential: AdminEmailCredential) -> "ActiveCredential":
        return cls(CredentialSource.CENTRALIZED, credential)

    @classmethod
    def per_user(cls, credential: Credential) -> "ActiveCredential":
        return cls(CredentialSource.PER_USER, credential)

    @property
    def country(self) -> str:
        return self.credential.country

    @property
    def provider(self) -> MailProvider:
        return self.credential.provider

    @property
    def access_token(self) -> str:
        return self.credential.access_token

    @property
    def from_email(self) -> str:
        if self.source == CredentialSource.CENTRALIZED:
            return self.credential.from_email
        return self.credential.mailbox.address

    @property
    def from_name(self) -> str:
        if self.source == CredentialSource.CENTRALIZED:
            name = self.credential.from_name
        else:
            name = self.credential.display_name or self.credential.mailbox.display_name
        return name or settings.DEFAULT_FROM_NAME


class CredentialResolver:
    """
    Picks the credential for automated sends in a country.

    Precedence: a usable admin credential, then the per-user credential
    of the country's active provider (or any connected provider when
    none is marked active).
    """

    def __init__(
        self,
        admin_service: AdminEmailService,
        store: CredentialStore,
        client_factory: ClientFactory = get_provider_client,
    ):
        self.admin_service = admin_service
        self.store = store
        self.client_factory = client_factory
        self.lifecycle = TokenLifecycleManager(store, client_factory=client_factory)

    async def active_credential_for(self, country: str) -> Optional[ActiveCredential]:
        admin = await self.admin_service.get_admin_email_config(country)
        if admin is not None:
            fresh = await self.admin_service.ensure_fresh(admin)
            if fresh is not None:
                return ActiveCredential.centralized(fresh)
            logger.warning(f"Admin credential for {country} is expired; trying connected mailbox")

        active_provider = await self.store.get_active_provider(country)
        providers = [active_provider] if active_provider else list(MailProvider)
        for provider in providers:
            credential = await self.store.get(country, provider)
            if credential is None:
                continue
            check = await self.lifecycle.check(credential)
            if check.usable:
                return ActiveCredential.per_user(check.credential)
            logger.info(f"Mailbox {country}/{provider.value} not usable: {check.state.value}")
        return None

    async def refresh(self, active: ActiveCredential) -> Optional[ActiveCredential]:
        """Refresh the tokens behind ``active``; None if that is not possible."""
        if active.source == CredentialSource.CENTRALIZED:
            refreshed = await self.admin_service.lifecycle.refresh(active.credential)
            return ActiveCredential.centralized(refreshed) if refreshed else None
        refreshed = await self.lifecycle.refresh(active.credential)
        return ActiveCredential.per_user(refreshed) if refreshed else None

    def client_for(self, active: ActiveCredential) -> MailProviderClient:
        return self.client_factory(
            active.provider,
            client_id=getattr(active.credential, "client_id", None),
            tenant_id=getattr(active.credential, "tenant_id", None),
        )


class NotificationDispatcher:
    """
    Sends the notification for a case status change.

    Example:
        dispatcher = NotificationDispatcher(rules, RecipientResolver(directory), credentials)
        result = await dispatcher.process_status_change(case, "Case Booked")
        result.status  # DeliveryStatus.SENT
    """

    def __init__(
        self,
        rules: NotificationRuleService,
        resolver: RecipientResolver,
        credentials: CredentialResolver,
        renderer: Optional[TemplateRenderer] = None,
        layout: Optional[EmailLayoutService] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rules = rules
        self.resolver = resolver
        self.credentials = credentials
        self.renderer = renderer or TemplateRenderer()
        self.layout = layout or EmailLayoutService()
        self.max_attempts = max(1, max_attempts or settings.SEND_MAX_ATTEMPTS)
        self.backoff_base = (
            settings.SEND_BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        )
        self.sleep = sleep

    async def process_status_change(
        self,
        case: CaseSnapshot,
        new_status: str,
        changed_by: Optional[str] = None,
    ) -> DeliveryResult:
        """
        Deliver the notification for ``case`` entering ``new_status``.

        Skips are results, not errors. Provider failures are reported in
        the result after retries are exhausted.

        Raises:
            ValidationError: Unknown status or a case without a country
        """
        status = parse_status(new_status)
        country = case.country
        if not country:
            raise ValidationError(message="Case has no country", case=case.case_reference_number)
        label = f"{country}/{status.value} case {case.case_reference_number}"

        rule = await self.rules.get_rule(country, status)
        if not rule.enabled:
            logger.debug(f"Notification rule disabled for {label}")
            return DeliveryResult(status=DeliveryStatus.SKIPPED_DISABLED)

        recipients = sorted(await self.resolver.resolve(rule, case), key=str.casefold)
        if not recipients:
            logger.info(f"No recipients resolved for {label}")
            return DeliveryResult(status=DeliveryStatus.SKIPPED_NO_RECIPIENTS)

        extra = {"status": status.value}
        if changed_by:
            extra["changedBy"] = changed_by
        message = self.renderer.render(rule.template, case, extra=extra)

        active = await self.credentials.active_credential_for(country)
        if active is None:
            logger.warning(f"No usable mail credential for {country}; {label} not sent")
            return DeliveryResult(
                status=DeliveryStatus.SKIPPED_NO_CREDENTIAL,
                recipients=recipients,
                subject=message.subject,
            )

        html = self.layout.render_notification(
            subject=message.subject, body=message.body, status=status.value, country=country
        )
        result = await self.send(active, recipients, message.subject, html)
        if result.sent:
            logger.info(
                f"Sent {label} to {len(recipients)} recipients via {result.credential_source}"
            )
        return result

    async def send(
        self,
        active: ActiveCredential,
        recipients: Sequence[str],
        subject: str,
        html: str,
    ) -> DeliveryResult:
        """Send one message to the whole recipient list, retrying as described above."""
        attempts = 0
        refreshed = False
        failure: Optional[ProviderFailure] = None
        error: Optional[str] = None

        while True:
            attempts += 1
            client = self.credentials.client_for(active)
            try:
                await client.send_mail(
                    active.access_token,
                    list(recipients),
                    subject,
                    html,
                    from_email=active.from_email,
                    from_name=active.from_name,
                )
            except TransientNetworkError as e:
                failure, error = ProviderFailure.NETWORK_ERROR, e.message
                if attempts >= self.max_attempts:
                    break
                delay = self.backoff_base * (2 ** (attempts - 1))
                logger.warning(
                    f"Send via {active.provider.value} for {active.country} failed "
                    f"(attempt {attempts}); retrying in {delay:g}s"
                )
                await self.sleep(delay)
                continue
            except MailProviderError as e:
                failure, error = e.failure, e.message
                if failure == ProviderFailure.EXPIRED and not refreshed:
                    refreshed = True
                    renewed = await self.credentials.refresh(active)
                    if renewed is not None:
                        active = renewed
                        continue
                break
            else:
                return DeliveryResult(
                    status=DeliveryStatus.SENT,
                    recipients=list(recipients),
                    subject=subject,
                    credential_source=active.source.value,
                    attempts=attempts,
                )

        logger.error(
            f"Send via {active.provider.value} for {active.country} failed after "
            f"{attempts} attempts: {failure.value if failure else 'unknown'}"
        )
        return DeliveryResult(
            status=DeliveryStatus.FAILED,
            recipients=list(recipients),
            subject=subject,
            credential_source=active.source.value,
            attempts=attempts,
            failure=failure,
            error=error,
        )
