"""
Unit tests for the mail provider clients.

WHAT: Tests OAuth exchange, refresh, online validation and sending for
Microsoft Graph and Gmail.

WHY: Provider error shapes differ; everything above this boundary relies
on them being normalized to the same exceptions and failure kinds.

HOW: Uses mocked httpx.AsyncClient to return canned provider responses.
"""

import base64
from email import message_from_bytes
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from casenotify.core.exceptions import (
    AuthenticationError,
    AuthFailureReason,
    ConfigurationError,
    MailProviderError,
    ProviderFailure,
    TransientNetworkError,
)
from casenotify.models.email_credential import MailProvider
from casenotify.services.mail_providers import (
    GoogleGmailClient,
    MicrosoftGraphClient,
    classify_failure,
    get_provider_client,
)


PATCH_TARGET = "casenotify.services.mail_providers.httpx.AsyncClient"


def _response(status_code, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    return response


class TestClassifyFailure:
    """Tests for provider error normalization."""

    @pytest.mark.parametrize(
        "status_code,payload,expected",
        [
            (401, {}, ProviderFailure.EXPIRED),
            (403, {}, ProviderFailure.PERMISSION_DENIED),
            (503, {}, ProviderFailure.NETWORK_ERROR),
            (429, {}, ProviderFailure.NETWORK_ERROR),
            (400, {}, ProviderFailure.UNKNOWN),
            (403, {"error": {"code": "InvalidAuthenticationToken"}}, ProviderFailure.EXPIRED),
            (400, {"error": {"status": "PERMISSION_DENIED"}}, ProviderFailure.PERMISSION_DENIED),
            (400, {"error": "invalid_grant"}, ProviderFailure.EXPIRED),
            (400, {"error": {"code": "ErrorAccessDenied"}}, ProviderFailure.PERMISSION_DENIED),
        ],
    )
    def test_classification(self, status_code, payload, expected):
        """Verify error codes win over HTTP status."""
        assert classify_failure(status_code, payload) == expected


class TestAuthorizationUrl:
    """Tests for PKCE authorize URLs."""

    def test_microsoft_url_uses_tenant_and_pkce(self):
        """Verify tenant, S256 challenge and state are in the URL."""
        client = MicrosoftGraphClient(client_id="ms-client", tenant_id="tenant-sg")

        url = client.build_authorization_url("state-1", "challenge-1")

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert parsed.path == "/tenant-sg/oauth2/v2.0/authorize"
        assert params["code_challenge"] == ["challenge-1"]
        assert params["code_challenge_method"] == ["S256"]
        assert params["state"] == ["state-1"]
        assert "offline_access" in params["scope"][0]

    def test_google_requests_offline_access(self):
        """Verify Google is asked for a refresh token."""
        client = GoogleGmailClient(client_id="google-client")

        params = parse_qs(urlparse(client.build_authorization_url("s", "c")).query)

        assert params["access_type"] == ["offline"]
        assert params["prompt"] == ["consent"]

    def test_missing_client_id_is_configuration_error(self):
        """Verify an unconfigured provider refuses to build a URL."""
        client = GoogleGmailClient(client_id=None)
        assert client.is_configured is False
        with pytest.raises(ConfigurationError) as exc_info:
            client.build_authorization_url("s", "c")
        assert exc_info.value.context["setting"] == "GOOGLE_CLIENT_ID"


class TestTokenRequests:
    """Tests for code exchange and refresh."""

    @pytest.mark.asyncio
    async def test_exchange_success(self):
        """Verify a token response becomes a TokenSet."""
        client = MicrosoftGraphClient(client_id="ms-client", client_secret="secret")
        with patch(PATCH_TARGET) as mock_client:
            mock_post = AsyncMock(
                return_value=_response(
                    200, {"access_token": "a", "refresh_token": "r", "expires_in": 3600}
                )
            )
            mock_client.return_value.__aenter__.return_value.post = mock_post

            tokens = await client.exchange_authorization_code("code-1", "verifier-1")

        assert tokens.access_token == "a"
        assert tokens.refresh_token == "r"
        sent = mock_post.call_args.kwargs["data"]
        assert sent["code_verifier"] == "verifier-1"
        assert sent["client_secret"] == "secret"
        assert sent["grant_type"] == "authorization_code"

    @pytest.mark.asyncio
    async def test_exchange_rejected(self):
        """Verify a rejected exchange is exchange_failed."""
        client = GoogleGmailClient(client_id="google-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_response(400, {"error": "invalid_grant"})
            )

            with pytest.raises(AuthenticationError) as exc_info:
                await client.exchange_authorization_code("bad", "verifier")

        assert exc_info.value.reason == AuthFailureReason.EXCHANGE_FAILED

    @pytest.mark.asyncio
    async def test_refresh_rejected(self):
        """Verify a rejected refresh is refresh_failed."""
        client = MicrosoftGraphClient(client_id="ms-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_response(400, {"error": "invalid_grant"})
            )

            with pytest.raises(AuthenticationError) as exc_info:
                await client.refresh_token("old-refresh")

        assert exc_info.value.reason == AuthFailureReason.REFRESH_FAILED

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        """Verify connection failures raise TransientNetworkError."""
        client = MicrosoftGraphClient(client_id="ms-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                side_effect=httpx.ConnectError("down")
            )

            with pytest.raises(TransientNetworkError):
                await client.refresh_token("old-refresh")


class TestIdentityAndValidation:
    """Tests for identity lookup and online validation."""

    @pytest.mark.asyncio
    async def test_microsoft_identity_falls_back_to_upn(self):
        """Verify userPrincipalName is used when mail is empty."""
        client = MicrosoftGraphClient(client_id="ms-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                return_value=_response(
                    200, {"mail": None, "userPrincipalName": "ops@hosp.sg", "displayName": "Ops"}
                )
            )

            identity = await client.fetch_identity("token")

        assert identity.address == "ops@hosp.sg"
        assert identity.display_name == "Ops"

    @pytest.mark.asyncio
    async def test_identity_failure(self):
        """Verify a refused identity lookup is userinfo_failed."""
        client = GoogleGmailClient(client_id="google-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                return_value=_response(403)
            )

            with pytest.raises(AuthenticationError) as exc_info:
                await client.fetch_identity("token")

        assert exc_info.value.reason == AuthFailureReason.USERINFO_FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,expected", [(200, True), (401, False), (403, True)])
    async def test_validate_online(self, status_code, expected):
        """Verify only an explicit 401 means the token is invalid."""
        client = MicrosoftGraphClient(client_id="ms-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                return_value=_response(status_code)
            )

            assert await client.validate_online("token") is expected

    @pytest.mark.asyncio
    async def test_validate_online_server_error_is_transient(self):
        """Verify 5xx during validation is a transient failure, not a verdict."""
        client = MicrosoftGraphClient(client_id="ms-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                return_value=_response(502)
            )

            with pytest.raises(TransientNetworkError):
                await client.validate_online("token")


class TestSendMail:
    """Tests for sending."""

    @pytest.mark.asyncio
    async def test_microsoft_send_body(self):
        """Verify Graph receives recipients, HTML body and the from address."""
        client = MicrosoftGraphClient(client_id="ms-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_post = AsyncMock(return_value=_response(202))
            mock_client.return_value.__aenter__.return_value.post = mock_post

            result = await client.send_mail(
                "token", ["a@x.com", "b@x.com"], "Subject", "<p>Hi</p>",
                from_email="notifications@hosp.sg", from_name="Notifications",
            )

        assert result is True
        message = mock_post.call_args.kwargs["json"]["message"]
        assert [r["emailAddress"]["address"] for r in message["toRecipients"]] == ["a@x.com", "b@x.com"]
        assert message["body"]["contentType"] == "HTML"
        assert message["from"]["emailAddress"]["address"] == "notifications@hosp.sg"
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_google_send_raw_message(self):
        """Verify Gmail receives a base64url MIME message."""
        client = GoogleGmailClient(client_id="google-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_post = AsyncMock(return_value=_response(200, {"id": "msg-1"}))
            mock_client.return_value.__aenter__.return_value.post = mock_post

            await client.send_mail("token", ["a@x.com"], "Subject", "<p>Hi</p>")

        raw = mock_post.call_args.kwargs["json"]["raw"]
        parsed = message_from_bytes(base64.urlsafe_b64decode(raw))
        assert parsed["To"] == "a@x.com"
        assert parsed["Subject"] == "Subject"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,failure",
        [(401, ProviderFailure.EXPIRED), (403, ProviderFailure.PERMISSION_DENIED), (400, ProviderFailure.UNKNOWN)],
    )
    async def test_rejected_send(self, status_code, failure):
        """Verify rejections raise MailProviderError with the normalized failure."""
        client = MicrosoftGraphClient(client_id="ms-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_response(status_code)
            )

            with pytest.raises(MailProviderError) as exc_info:
                await client.send_mail("token", ["a@x.com"], "Subject", "body")

        assert exc_info.value.failure == failure

    @pytest.mark.asyncio
    async def test_send_server_error_is_transient(self):
        """Verify provider 5xx on send is retryable."""
        client = GoogleGmailClient(client_id="google-client")
        with patch(PATCH_TARGET) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_response(503)
            )

            with pytest.raises(TransientNetworkError):
                await client.send_mail("token", ["a@x.com"], "Subject", "body")


class TestGetProviderClient:
    """Tests for the client factory."""

    def test_uses_configured_client(self):
        """Verify settings supply client id and secret."""
        client = get_provider_client(MailProvider.MICROSOFT)
        assert isinstance(client, MicrosoftGraphClient)
        assert client.client_id == "ms-client-id"
        assert client.client_secret == "ms-client-secret"

    def test_admin_client_id_does_not_get_configured_secret(self):
        """Verify the configured secret is not sent with another app's client id."""
        client = get_provider_client(MailProvider.MICROSOFT, client_id="admin-app", tenant_id="t-1")
        assert client.client_id == "admin-app"
        assert client.client_secret is None
        assert client.tenant_id == "t-1"

    def test_unconfigured_google(self):
        """Verify Google without a client id reports not configured."""
        assert get_provider_client("google").is_configured is False
