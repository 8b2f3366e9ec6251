"""
Unit tests for TokenLifecycleManager.

WHAT: Local expiry, silent refresh, online revalidation and the two
ways of handling an unreachable provider.

HOW: Real CredentialStore on the test database; the provider is a
FakeProviderClient so every network answer is scripted.
"""

from datetime import timedelta

import pytest

from casenotify.core.exceptions import (
    AuthenticationError,
    AuthFailureReason,
    RevocationError,
    TransientNetworkError,
)
from casenotify.models.base import utcnow
from casenotify.models.email_credential import MailProvider
from casenotify.services.credential_store import CredentialStore
from casenotify.services.token_lifecycle import TokenLifecycleManager, TokenState

from tests.factories import CredentialFactory


@pytest.fixture
def store(db_session):
    return CredentialStore(db_session)


def _manager(store, provider_client, **kwargs):
    return TokenLifecycleManager(store, client_factory=provider_client.factory, **kwargs)


class TestLocalExpiry:
    """Tests for credentials past their expiry."""

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, store, provider_client):
        """Verify an expired credential with nothing to refresh is unusable without a network call."""
        credential = await store.save(
            CredentialFactory.build(refresh_token=None, expires_at=utcnow() - timedelta(minutes=1))
        )
        manager = _manager(store, provider_client)

        result = await manager.check(credential)

        assert result.state == TokenState.EXPIRED
        assert result.usable is False
        provider_client.validate_online.assert_not_called()
        provider_client.refresh_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_expiry_skew(self, store, provider_client):
        """Verify a token inside the skew window counts as expired."""
        credential = CredentialFactory.build(
            refresh_token=None, expires_at=utcnow() + timedelta(seconds=60)
        )
        manager = _manager(store, provider_client, skew_seconds=300)

        assert manager.is_locally_expired(credential) is True
        assert _manager(store, provider_client, skew_seconds=0).is_locally_expired(credential) is False

    @pytest.mark.asyncio
    async def test_expired_is_refreshed_and_persisted(self, store, provider_client):
        """Verify a silent refresh stores the new token and keeps the refresh token."""
        await store.save(CredentialFactory.build(expires_at=utcnow() - timedelta(minutes=1)))
        credential = await store.get("Singapore", MailProvider.MICROSOFT)
        provider_client.refresh_token.return_value.refresh_token = None
        manager = _manager(store, provider_client)

        result = await manager.check(credential)

        assert result.state == TokenState.REFRESHED
        assert result.credential.access_token == "refreshed-access"
        provider_client.refresh_token.assert_awaited_once_with("user-refresh")
        stored = await store.get("Singapore", MailProvider.MICROSOFT)
        assert stored.access_token == "refreshed-access"
        assert stored.refresh_token == "user-refresh"

    @pytest.mark.asyncio
    async def test_refresh_failure(self, store, provider_client):
        """Verify a rejected refresh is reported, not raised."""
        credential = await store.save(
            CredentialFactory.build(expires_at=utcnow() - timedelta(minutes=1))
        )
        provider_client.refresh_token.side_effect = AuthenticationError(
            reason=AuthFailureReason.REFRESH_FAILED
        )

        result = await _manager(store, provider_client).check(credential)

        assert result.state == TokenState.REFRESH_FAILED
        assert result.credential is None


class TestOnlineValidation:
    """Tests for credentials that look valid locally."""

    @pytest.mark.asyncio
    async def test_valid(self, store, provider_client):
        """Verify an accepted token is returned as-is."""
        credential = await store.save(CredentialFactory.build())

        result = await _manager(store, provider_client).check(credential)

        assert result.state == TokenState.VALID
        assert result.credential is credential
        provider_client.validate_online.assert_awaited_once_with("user-access")

    @pytest.mark.asyncio
    async def test_revoked_is_cleared(self, store, provider_client):
        """Verify a token the provider rejects is removed from storage."""
        credential = await store.save(CredentialFactory.build())
        provider_client.validate_online.return_value = False

        result = await _manager(store, provider_client).check(credential)

        assert result.state == TokenState.REVOKED
        assert await store.get("Singapore", MailProvider.MICROSOFT) is None

    @pytest.mark.asyncio
    async def test_unreachable_keeps_local_verdict(self, store, provider_client):
        """Verify a network failure falls back to local expiry by default."""
        credential = await store.save(CredentialFactory.build())
        provider_client.validate_online.side_effect = TransientNetworkError()

        result = await _manager(store, provider_client, fail_closed=False).check(credential)

        assert result.state == TokenState.UNVERIFIED
        assert result.usable is True
        assert await store.get("Singapore", MailProvider.MICROSOFT) is not None

    @pytest.mark.asyncio
    async def test_unreachable_fails_closed_in_strict_mode(self, store, provider_client):
        """Verify strict mode treats an unreachable provider as unusable."""
        credential = await store.save(CredentialFactory.build())
        provider_client.validate_online.side_effect = TransientNetworkError()

        result = await _manager(store, provider_client, fail_closed=True).check(credential)

        assert result.state == TokenState.UNREACHABLE
        assert result.usable is False


class TestRequireUsable:
    """Tests for the raising variant."""

    @pytest.mark.asyncio
    async def test_revoked_raises(self, store, provider_client):
        """Verify revocation surfaces as RevocationError."""
        credential = await store.save(CredentialFactory.build())
        provider_client.validate_online.return_value = False

        with pytest.raises(RevocationError):
            await _manager(store, provider_client).require_usable(credential)

    @pytest.mark.asyncio
    async def test_expired_raises_refresh_failed(self, store, provider_client):
        """Verify an unrefreshable credential raises with the refresh_failed reason."""
        credential = CredentialFactory.build(
            refresh_token=None, expires_at=utcnow() - timedelta(minutes=1)
        )

        with pytest.raises(AuthenticationError) as exc_info:
            await _manager(store, provider_client).require_usable(credential)

        assert exc_info.value.reason == AuthFailureReason.REFRESH_FAILED

    @pytest.mark.asyncio
    async def test_usable_returns_credential(self, store, provider_client):
        """Verify a usable credential is returned."""
        credential = await store.save(CredentialFactory.build())
        assert await _manager(store, provider_client).require_usable(credential) is credential
