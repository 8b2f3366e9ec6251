"""
Integration tests for the email configuration API.

WHAT: Mailbox connection (authorize, callback, status, disconnect) and
the per-country admin credential (set, get, test, remove) over HTTP.

HOW: Uses pytest-asyncio with AsyncClient; the mail provider is the
FakeProviderClient injected through get_client_factory.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from casenotify.core.exceptions import MailProviderError, ProviderFailure
from casenotify.models.base import utcnow
from casenotify.services.pending_authorizations import KEY_PREFIX


def _admin_body(**overrides):
    body = {
        "provider": "microsoft",
        "client_id": "admin-client-id",
        "tenant_id": "tenant-sg",
        "access_token": "admin-access",
        "refresh_token": "admin-refresh",
        "expires_at": (utcnow() + timedelta(hours=1)).isoformat(),
        "from_email": "notifications@hosp.sg",
        "from_name": "SG Case Notifications",
    }
    body.update(overrides)
    return body


async def _connect(client: AsyncClient, auth_headers: dict, **callback):
    start = await client.post(
        "/api/email-config/Singapore/providers/microsoft/authorize", headers=auth_headers
    )
    assert start.status_code == 200
    state = start.json()["state"]
    return await client.post(
        "/api/email-config/oauth/callback",
        headers=auth_headers,
        json={"state": state, **(callback or {"code": "auth-code"})},
    )


class TestMailboxConnection:
    """Tests for connecting mailboxes."""

    @pytest.mark.asyncio
    async def test_status_before_connecting(self, client: AsyncClient, auth_headers: dict):
        """Verify every provider is listed with a connect action."""
        response = await client.get("/api/email-config/Singapore/providers", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert [item["provider"] for item in data] == ["microsoft", "google"]
        assert all(item["action"] == "connect" for item in data)

    @pytest.mark.asyncio
    async def test_connect_flow(self, client: AsyncClient, auth_headers: dict, provider_client):
        """Verify authorize + callback connects the mailbox and activates it."""
        response = await _connect(client, auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["mailbox"]["address"] == "coordinator@hosp.sg"
        assert "access_token" not in response.text

        status = await client.get("/api/email-config/Singapore/providers", headers=auth_headers)
        microsoft = status.json()[0]
        assert microsoft["connected"] is True
        assert microsoft["usable"] is True
        assert microsoft["is_active_provider"] is True

        admin = await client.get("/api/email-config/Singapore/admin", headers=auth_headers)
        assert admin.json()["from_email"] == "coordinator@hosp.sg"

    @pytest.mark.asyncio
    async def test_authorize_parks_state_in_redis(self, client: AsyncClient, auth_headers: dict, fake_redis):
        """Verify the pending request is held in Redis until the callback consumes it."""
        start = await client.post(
            "/api/email-config/Singapore/providers/microsoft/authorize", headers=auth_headers
        )
        state = start.json()["state"]
        assert KEY_PREFIX + state in fake_redis.values

        callback = {"state": state, "code": "auth-code"}
        first = await client.post("/api/email-config/oauth/callback", headers=auth_headers, json=callback)
        replay = await client.post("/api/email-config/oauth/callback", headers=auth_headers, json=callback)

        assert first.json()["ok"] is True
        assert replay.status_code == 401
        assert fake_redis.values == {}

    @pytest.mark.asyncio
    async def test_cancelled(self, client: AsyncClient, auth_headers: dict):
        """Verify a user cancellation comes back as ok=false with its reason."""
        response = await _connect(client, auth_headers, error="access_denied")

        assert response.status_code == 200
        assert response.json()["ok"] is False
        assert response.json()["reason"] == "cancelled"

    @pytest.mark.asyncio
    async def test_unknown_state(self, client: AsyncClient, auth_headers: dict):
        """Verify a callback for no pending request is a 401 with a reason."""
        response = await client.post(
            "/api/email-config/oauth/callback",
            headers=auth_headers,
            json={"state": "forged", "code": "auth-code"},
        )

        assert response.status_code == 401
        assert response.json()["details"]["reason"] == "state_mismatch"

    @pytest.mark.asyncio
    async def test_authorize_not_configured(self, client: AsyncClient, auth_headers: dict, provider_client):
        """Verify a provider without a client id is a 503 ConfigurationError."""
        provider_client.client_id = None

        response = await client.post(
            "/api/email-config/Singapore/providers/microsoft/authorize", headers=auth_headers
        )

        assert response.status_code == 503
        assert response.json()["error"] == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client: AsyncClient, auth_headers: dict):
        """Verify unsupported providers are rejected by validation."""
        response = await client.post(
            "/api/email-config/Singapore/providers/yahoo/authorize", headers=auth_headers
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_disconnect(self, client: AsyncClient, auth_headers: dict):
        """Verify disconnect removes the mailbox, and a second one is a 404."""
        await _connect(client, auth_headers)

        first = await client.delete(
            "/api/email-config/Singapore/providers/microsoft", headers=auth_headers
        )
        second = await client.delete(
            "/api/email-config/Singapore/providers/microsoft", headers=auth_headers
        )

        assert first.status_code == 204
        assert second.status_code == 404


class TestAdminCredential:
    """Tests for the centralized credential endpoints."""

    @pytest.mark.asyncio
    async def test_missing_is_null(self, client: AsyncClient, auth_headers: dict):
        """Verify a country without config returns null, not an error."""
        response = await client.get("/api/email-config/Singapore/admin", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() is None

    @pytest.mark.asyncio
    async def test_set_get_remove(self, client: AsyncClient, auth_headers: dict):
        """Verify the admin credential lifecycle; tokens are never returned."""
        put = await client.put(
            "/api/email-config/Singapore/admin", headers=auth_headers, json=_admin_body()
        )
        assert put.status_code == 200
        assert "admin-access" not in put.text

        get = await client.get("/api/email-config/Singapore/admin", headers=auth_headers)
        assert get.json()["client_id"] == "admin-client-id"
        assert "access_token" not in get.json()

        countries = await client.get("/api/email-config/admin/countries", headers=auth_headers)
        assert countries.json() == ["Singapore"]

        delete = await client.delete("/api/email-config/Singapore/admin", headers=auth_headers)
        assert delete.status_code == 204
        again = await client.delete("/api/email-config/Singapore/admin", headers=auth_headers)
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_expiry_normalized_to_utc(self, client: AsyncClient, auth_headers: dict):
        """Verify an offset expiry is stored as UTC."""
        response = await client.put(
            "/api/email-config/Singapore/admin",
            headers=auth_headers,
            json=_admin_body(expires_at="2030-01-01T08:00:00+08:00"),
        )

        assert response.json()["expires_at"] == "2030-01-01T00:00:00"

    @pytest.mark.asyncio
    async def test_invalid_from_email(self, client: AsyncClient, auth_headers: dict):
        """Verify an invalid sender address is a field-level 400."""
        response = await client.put(
            "/api/email-config/Singapore/admin",
            headers=auth_headers,
            json=_admin_body(from_email="notifications"),
        )

        assert response.status_code == 400
        fields = [error["field"] for error in response.json()["details"]["errors"]]
        assert "body.from_email" in fields

    @pytest.mark.asyncio
    async def test_send_test_email(self, client: AsyncClient, auth_headers: dict, provider_client):
        """Verify a test email is sent with the admin token."""
        await client.put("/api/email-config/Singapore/admin", headers=auth_headers, json=_admin_body())

        response = await client.post(
            "/api/email-config/Singapore/admin/test",
            headers=auth_headers,
            json={"test_address": "me@hosp.sg"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert provider_client.sent_tokens == ["admin-access"]

    @pytest.mark.asyncio
    async def test_send_test_email_permission_denied(
        self, client: AsyncClient, auth_headers: dict, provider_client
    ):
        """Verify a permission failure is reported in the body with a re-consent action."""
        await client.put("/api/email-config/Singapore/admin", headers=auth_headers, json=_admin_body())
        provider_client.send_mail.side_effect = MailProviderError(
            failure=ProviderFailure.PERMISSION_DENIED
        )

        response = await client.post(
            "/api/email-config/Singapore/admin/test",
            headers=auth_headers,
            json={"test_address": "me@hosp.sg"},
        )

        data = response.json()
        assert response.status_code == 200
        assert data["success"] is False
        assert data["failure"] == "permission_denied"
        assert data["action"] == "reconsent"
