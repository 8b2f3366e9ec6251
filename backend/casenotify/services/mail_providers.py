"""
Mail provider clients.

WHAT: httpx clients for the two supported mail providers (Microsoft
Graph and Gmail) covering the OAuth code exchange, token refresh,
online token validation, mailbox identity lookup and sending.

WHY: Each provider has its own endpoints and error shapes. Everything
above this module works with TokenSet, MailboxIdentity and a small set
of exceptions:
- AuthenticationError for exchange, refresh and identity failures
- TransientNetworkError for network trouble and provider 5xx / 429
- MailProviderError carrying a ProviderFailure for rejected sends

HOW: One abstract base with the shared OAuth plumbing; subclasses
supply endpoints, identity parsing and the send request body.
"""

import base64
import logging
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import httpx

from casenotify.core.config import settings
from casenotify.core.exceptions import (
    AuthenticationError,
    AuthFailureReason,
    ConfigurationError,
    MailProviderError,
    ProviderFailure,
    TransientNetworkError,
)
from casenotify.models.email_credential import MailProvider
from casenotify.schemas.credential import MailboxIdentity, TokenSet


logger = logging.getLogger(__name__)


# Provider error codes that mean the token itself is no good
_EXPIRED_CODES = {
    "invalidauthenticationtoken",
    "unauthenticated",
    "invalid_grant",
    "invalid_token",
    "tokenexpired",
}
# Provider error codes that mean the token is fine but lacks consent/scope
_PERMISSION_CODES = {
    "erroraccessdenied",
    "authorization_requestdenied",
    "permission_denied",
    "insufficientpermissions",
    "access_denied",
}


def _json(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_code(payload: Dict[str, Any]) -> str:
    """Pull the provider's error code out of a Graph, Google API or OAuth error body."""
    error = payload.get("error")
    if isinstance(error, dict):
        return str(error.get("code") or error.get("status") or "").lower()
    if isinstance(error, str):
        return error.lower()
    return ""


def classify_failure(status_code: int, payload: Optional[Dict[str, Any]] = None) -> ProviderFailure:
    """
    Normalize a provider error response to a ProviderFailure.

    Explicit error codes win over the HTTP status because Gmail reports
    some permission problems as 400 and Graph some expiries as 403.
    """
    code = _error_code(payload or {})
    if code in _EXPIRED_CODES:
        return ProviderFailure.EXPIRED
    if code in _PERMISSION_CODES:
        return ProviderFailure.PERMISSION_DENIED
    if status_code == 401:
        return ProviderFailure.EXPIRED
    if status_code == 403:
        return ProviderFailure.PERMISSION_DENIED
    if status_code == 429 or status_code >= 500:
        return ProviderFailure.NETWORK_ERROR
    return ProviderFailure.UNKNOWN


class MailProviderClient(ABC):
    """
    Base client for one mail provider.

    Instances are cheap; build one per call with get_provider_client so
    admin credentials can use their own client id and tenant.
    """

    provider: MailProvider
    scopes: List[str]
    identity_url: str

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri or settings.OAUTH_REDIRECT_URI
        self.timeout = timeout or settings.MAIL_PROVIDER_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Provider specifics
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def authorize_url(self) -> str:
        ...

    @property
    @abstractmethod
    def token_url(self) -> str:
        ...

    @abstractmethod
    def parse_identity(self, payload: Dict[str, Any]) -> MailboxIdentity:
        ...

    @abstractmethod
    async def _post_message(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        to: Sequence[str],
        subject: str,
        html_body: str,
        from_email: Optional[str],
        from_name: Optional[str],
    ) -> httpx.Response:
        ...

    def authorization_params(self) -> Dict[str, str]:
        """Extra query parameters for the authorize URL."""
        return {}

    def refresh_params(self) -> Dict[str, str]:
        """Extra form fields for a refresh request."""
        return {}

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id)

    def require_configured(self) -> str:
        """
        Return the client id or raise.

        Raises:
            ConfigurationError: If no client id is configured for this provider
        """
        if not self.client_id:
            raise ConfigurationError(
                message=f"{self.provider.value.title()} email is not configured",
                provider=self.provider.value,
                setting=f"{self.provider.value.upper()}_CLIENT_ID",
            )
        return self.client_id

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        """Authorize URL for the PKCE (S256) authorization code flow."""
        params = {
            "client_id": self.require_configured(),
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        params.update(self.authorization_params())
        return f"{self.authorize_url}?{urlencode(params)}"

    async def _token_request(
        self, data: Dict[str, str], reason: AuthFailureReason
    ) -> TokenSet:
        data = {"client_id": self.require_configured(), **data}
        if self.client_secret:
            data["client_secret"] = self.client_secret

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.token_url, data=data)
        except httpx.RequestError as e:
            logger.warning(f"{self.provider.value} token endpoint unreachable: {type(e).__name__}")
            raise TransientNetworkError(provider=self.provider.value) from e

        payload = _json(response)
        if response.status_code != 200 or "access_token" not in payload:
            logger.warning(
                f"{self.provider.value} token request failed: "
                f"status={response.status_code} error={_error_code(payload) or 'unknown'}"
            )
            raise AuthenticationError(
                reason=reason,
                provider=self.provider.value,
                status=response.status_code,
                provider_error=_error_code(payload) or None,
            )
        return TokenSet.from_token_response(payload)

    async def exchange_authorization_code(self, code: str, code_verifier: str) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Raises:
            ConfigurationError: No client id configured
            AuthenticationError: Provider rejected the exchange (exchange_failed)
            TransientNetworkError: Provider unreachable
        """
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "code_verifier": code_verifier,
            },
            AuthFailureReason.EXCHANGE_FAILED,
        )

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new access token.

        Raises:
            AuthenticationError: Provider rejected the refresh (refresh_failed)
            TransientNetworkError: Provider unreachable
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token, **self.refresh_params()},
            AuthFailureReason.REFRESH_FAILED,
        )

    # ------------------------------------------------------------------
    # Identity / validation
    # ------------------------------------------------------------------

    async def _get_identity_response(self, access_token: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.get(
                    self.identity_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.RequestError as e:
            raise TransientNetworkError(provider=self.provider.value) from e

    async def fetch_identity(self, access_token: str) -> MailboxIdentity:
        """
        Look up the mailbox the token belongs to.

        Raises:
            AuthenticationError: Provider refused or returned no address (userinfo_failed)
            TransientNetworkError: Provider unreachable
        """
        response = await self._get_identity_response(access_token)
        payload = _json(response)
        if response.status_code != 200:
            raise AuthenticationError(
                reason=AuthFailureReason.USERINFO_FAILED,
                provider=self.provider.value,
                status=response.status_code,
            )
        identity = self.parse_identity(payload)
        if not identity.address:
            raise AuthenticationError(
                reason=AuthFailureReason.USERINFO_FAILED,
                provider=self.provider.value,
            )
        return identity

    async def validate_online(self, access_token: str) -> bool:
        """
        Ask the provider whether it still accepts the token.

        Returns False only on an explicit 401. Anything else the provider
        answers counts as accepted.

        Raises:
            TransientNetworkError: Provider unreachable or answered 5xx / 429
        """
        response = await self._get_identity_response(access_token)
        if response.status_code == 401:
            return False
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientNetworkError(
                provider=self.provider.value, status=response.status_code
            )
        return True

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_mail(
        self,
        access_token: str,
        to: Sequence[str],
        subject: str,
        html_body: str,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> bool:
        """
        Send one HTML message to every address in ``to``.

        Raises:
            TransientNetworkError: Network failure or provider 5xx / 429 (retryable)
            MailProviderError: Provider rejected the send (failure says why)
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await self._post_message(
                    client, access_token, to, subject, html_body, from_email, from_name
                )
        except httpx.RequestError as e:
            logger.warning(f"{self.provider.value} send failed: {type(e).__name__}")
            raise TransientNetworkError(provider=self.provider.value) from e

        if 200 <= response.status_code < 300:
            return True

        payload = _json(response)
        failure = classify_failure(response.status_code, payload)
        logger.warning(
            f"{self.provider.value} rejected send: status={response.status_code} "
            f"failure={failure.value}"
        )
        if failure == ProviderFailure.NETWORK_ERROR:
            raise TransientNetworkError(
                provider=self.provider.value, status=response.status_code
            )
        raise MailProviderError(
            message=f"{self.provider.value.title()} rejected the message",
            failure=failure,
            provider=self.provider.value,
            status=response.status_code,
        )


class MicrosoftGraphClient(MailProviderClient):
    """Outlook / Microsoft 365 via Microsoft Graph."""

    provider = MailProvider.MICROSOFT
    scopes = [
        "https://graph.microsoft.com/Mail.Send",
        "https://graph.microsoft.com/User.Read",
        "offline_access",
    ]
    identity_url = "https://graph.microsoft.com/v1.0/me"
    send_url = "https://graph.microsoft.com/v1.0/me/sendMail"

    def __init__(self, *args: Any, tenant_id: Optional[str] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.tenant_id = tenant_id or settings.MICROSOFT_TENANT_ID

    @property
    def authorize_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/authorize"

    @property
    def token_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/token"

    def authorization_params(self) -> Dict[str, str]:
        return {"prompt": "select_account"}

    def refresh_params(self) -> Dict[str, str]:
        # Graph requires the scope again on refresh
        return {"scope": " ".join(self.scopes)}

    def parse_identity(self, payload: Dict[str, Any]) -> MailboxIdentity:
        return MailboxIdentity(
            address=payload.get("mail") or payload.get("userPrincipalName") or "",
            display_name=payload.get("displayName"),
        )

    async def _post_message(self, client, access_token, to, subject, html_body, from_email, from_name):
        message: Dict[str, Any] = {
            "subject": subject,
            "body": {"contentType": "HTML", "content": html_body},
            "toRecipients": [{"emailAddress": {"address": address}} for address in to],
        }
        if from_email:
            message["from"] = {"emailAddress": {"address": from_email, "name": from_name or from_email}}
        return await client.post(
            self.send_url,
            headers={"Authorization": f"Bearer {access_token}"},
            json={"message": message, "saveToSentItems": True},
        )


class GoogleGmailClient(MailProviderClient):
    """Gmail via the Gmail REST API."""

    provider = MailProvider.GOOGLE
    scopes = [
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
    ]
    identity_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    send_url = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"

    @property
    def authorize_url(self) -> str:
        return "https://accounts.google.com/o/oauth2/v2/auth"

    @property
    def token_url(self) -> str:
        return "https://oauth2.googleapis.com/token"

    def authorization_params(self) -> Dict[str, str]:
        # WHY: Google only returns a refresh token with offline access and explicit consent
        return {"access_type": "offline", "prompt": "consent"}

    def parse_identity(self, payload: Dict[str, Any]) -> MailboxIdentity:
        return MailboxIdentity(
            address=payload.get("email") or "",
            display_name=payload.get("name"),
        )

    @staticmethod
    def build_raw_message(
        to: Sequence[str],
        subject: str,
        html_body: str,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> str:
        """RFC 2822 message, base64url-encoded as Gmail's ``raw`` field expects."""
        message = EmailMessage()
        message["To"] = ", ".join(to)
        message["Subject"] = subject
        if from_email:
            message["From"] = formataddr((from_name or "", from_email))
        message.set_content(html_body, subtype="html")
        return base64.urlsafe_b64encode(message.as_bytes()).decode()

    async def _post_message(self, client, access_token, to, subject, html_body, from_email, from_name):
        return await client.post(
            self.send_url,
            headers={"Authorization": f"Bearer {access_token}"},
            json={"raw": self.build_raw_message(to, subject, html_body, from_email, from_name)},
        )


PROVIDER_CLIENTS = {
    MailProvider.MICROSOFT: MicrosoftGraphClient,
    MailProvider.GOOGLE: GoogleGmailClient,
}

ClientFactory = Callable[..., MailProviderClient]


def get_provider_client(
    provider: MailProvider,
    client_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> MailProviderClient:
    """
    Build a client for ``provider``.

    ``client_id`` / ``tenant_id`` override the application settings; admin
    credentials carry their own.
    """
    provider = MailProvider(provider)
    client_class = PROVIDER_CLIENTS[provider]
    configured_id = settings.client_id_for(provider.value)
    client_id = client_id or configured_id
    kwargs: Dict[str, Any] = dict(
        client_id=client_id,
        # the configured secret belongs to the configured client only
        client_secret=(
            settings.client_secret_for(provider.value) if client_id == configured_id else None
        ),
    )
    if provider == MailProvider.MICROSOFT:
        kwargs["tenant_id"] = tenant_id
    return client_class(**kwargs)
