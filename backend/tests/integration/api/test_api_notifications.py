"""
Integration tests for the status-change notification endpoint.

WHAT: The booking workflow's call into this service, end to end: rule,
recipients, credential choice and send.
"""

from datetime import timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from casenotify.core.config import settings
from casenotify.core.deps import get_client_factory, get_pending_authorizations
from casenotify.db.session import get_db
from casenotify.main import create_app
from casenotify.models.base import utcnow
from casenotify.services.directory import HttpDirectory


CASE = {
    "id": "case-1",
    "caseReferenceNumber": "SG-2024-001",
    "country": "Singapore",
    "hospital": "Singapore General Hospital",
    "department": "Orthopedics",
    "submittedBy": "nurse@hosp.sg",
}


async def _enable_rule(client: AsyncClient, auth_headers: dict):
    response = await client.patch(
        "/api/notification-rules/Singapore/Case Booked",
        headers=auth_headers,
        json={
            "enabled": True,
            "recipients": {"roles": ["Admin"], "include_submitter": True},
            "template": {"subject": "New case {{caseReference}}"},
        },
    )
    assert response.status_code == 200


async def _set_admin(client: AsyncClient, auth_headers: dict):
    response = await client.put(
        "/api/email-config/Singapore/admin",
        headers=auth_headers,
        json={
            "provider": "microsoft",
            "client_id": "admin-client-id",
            "access_token": "admin-access",
            "refresh_token": "admin-refresh",
            "expires_at": (utcnow() + timedelta(hours=1)).isoformat(),
            "from_email": "notifications@hosp.sg",
            "from_name": "SG Case Notifications",
        },
    )
    assert response.status_code == 200


async def _notify(client: AsyncClient, auth_headers: dict, case=None, country="Singapore"):
    return await client.post(
        f"/api/notifications/{country}/status-change",
        headers=auth_headers,
        json={"case": case or CASE, "new_status": "Case Booked"},
    )


class TestStatusChange:
    """Tests for POST /notifications/{country}/status-change."""

    @pytest.mark.asyncio
    async def test_sent_with_admin_credential(
        self, client: AsyncClient, auth_headers: dict, provider_client
    ):
        """Verify an enabled rule sends to the resolved recipients with the admin mailbox."""
        await _enable_rule(client, auth_headers)
        await _set_admin(client, auth_headers)

        response = await _notify(client, auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "sent"
        assert data["recipients"] == ["nurse@hosp.sg", "ops1@hosp.sg"]
        assert data["subject"] == "New case SG-2024-001"
        assert data["credential_source"] == "centralized"
        assert provider_client.sent_tokens == ["admin-access"]

    @pytest.mark.asyncio
    async def test_disabled_rule(self, client: AsyncClient, auth_headers: dict, provider_client):
        """Verify a disabled rule is reported as skipped."""
        await _set_admin(client, auth_headers)

        response = await _notify(client, auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "skipped_disabled"
        provider_client.send_mail.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_credential(self, client: AsyncClient, auth_headers: dict):
        """Verify a country with no mailbox is reported as skipped."""
        await _enable_rule(client, auth_headers)

        response = await _notify(client, auth_headers)

        assert response.json()["status"] == "skipped_no_credential"

    @pytest.mark.asyncio
    async def test_case_from_other_country(self, client: AsyncClient, auth_headers: dict):
        """Verify a case cannot be notified under another country's rules."""
        response = await _notify(client, auth_headers, case={**CASE, "country": "Malaysia"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_case_country_taken_from_path(
        self, client: AsyncClient, auth_headers: dict, provider_client
    ):
        """Verify a case without a country is scoped by the URL."""
        await _enable_rule(client, auth_headers)
        await _set_admin(client, auth_headers)
        case = {key: value for key, value in CASE.items() if key != "country"}

        response = await _notify(client, auth_headers, case=case)

        assert response.json()["status"] == "sent"


DIRECTORY_URL = "https://booking.example/api"
DIRECTORY_PATCH = "casenotify.services.directory.httpx.AsyncClient"


def _directory_response(status_code, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else []
    return response


@pytest_asyncio.fixture
async def directory_client(
    db_session, provider_client, pending_authorizations
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against an app whose directory comes from settings."""
    with patch.object(settings, "DIRECTORY_API_URL", DIRECTORY_URL), patch.object(
        settings, "DIRECTORY_API_TOKEN", "directory-token"
    ):
        app = create_app()
    assert isinstance(app.state.directory, HttpDirectory)

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client_factory] = lambda: provider_client.factory
    app.dependency_overrides[get_pending_authorizations] = lambda: pending_authorizations

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class TestConfiguredDirectory:
    """Tests for role expansion through the booking application's user API."""

    @pytest.mark.asyncio
    async def test_roles_expanded_from_user_api(
        self, directory_client: AsyncClient, auth_headers: dict, provider_client
    ):
        """Verify Admin-role recipients come from the configured directory."""
        await _enable_rule(directory_client, auth_headers)
        await _set_admin(directory_client, auth_headers)
        records = [
            {"id": 11, "email": "Lead.Admin@hosp.sg", "role": "Admin", "countries": ["Singapore"]},
            {"id": 12, "email": "my.admin@hosp.my", "role": "Admin", "countries": ["Malaysia"]},
        ]

        with patch(DIRECTORY_PATCH) as mock_client:
            get = mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                return_value=_directory_response(200, records)
            )
            response = await _notify(directory_client, auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "sent"
        assert data["recipients"] == ["Lead.Admin@hosp.sg", "nurse@hosp.sg"]
        call = get.call_args
        assert call.args[0] == f"{DIRECTORY_URL}/users"
        assert call.kwargs["params"] == {"role": "Admin", "country": "Singapore"}
        assert call.kwargs["headers"]["Authorization"] == "Bearer directory-token"

    @pytest.mark.asyncio
    async def test_directory_unreachable(
        self, directory_client: AsyncClient, auth_headers: dict, provider_client
    ):
        """Verify an unreachable directory fails the request as retryable and sends nothing."""
        await _enable_rule(directory_client, auth_headers)
        await _set_admin(directory_client, auth_headers)

        with patch(DIRECTORY_PATCH) as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                side_effect=httpx.ConnectError("down")
            )
            response = await _notify(directory_client, auth_headers)

        assert response.status_code == 503
        provider_client.send_mail.assert_not_called()
