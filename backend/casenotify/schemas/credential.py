"""
Mailbox credential schemas.

WHAT: In-memory shapes for per-user mailbox credentials, provider token
responses and the connection status shown in the console.

WHY: Services pass plaintext tokens around in these models; only the
DAOs see the encrypted columns. Token fields are excluded from repr so
they do not end up in logs.
"""

import enum
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from casenotify.models.base import utcnow
from casenotify.models.email_credential import MailProvider


class MailboxIdentity(BaseModel):
    """The authenticated mailbox: address plus the owner's display name."""

    address: str
    display_name: Optional[str] = None


class TokenSet(BaseModel):
    """Tokens returned by a provider's token endpoint."""

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: datetime

    @classmethod
    def from_token_response(
        cls, payload: Dict[str, Any], now: Optional[datetime] = None
    ) -> "TokenSet":
        """Build from an OAuth token response; ``expires_in`` defaults to one hour."""
        issued_at = now or utcnow()
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=issued_at + timedelta(seconds=int(payload.get("expires_in", 3600))),
        )


class Credential(BaseModel):
    """Per-user mailbox credential for one (country, provider) pair."""

    country: str
    provider: MailProvider
    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: datetime
    mailbox: MailboxIdentity
    display_name: Optional[str] = None

    def with_tokens(self, tokens: TokenSet) -> "Credential":
        """Copy with refreshed tokens; keeps the old refresh token if none was issued."""
        return self.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or self.refresh_token,
                "expires_at": tokens.expires_at,
            }
        )


class ConnectionAction(str, enum.Enum):
    """Next step the console should offer for a mailbox."""

    SETUP = "setup"
    CONNECT = "connect"
    RECONNECT = "reconnect"
    RECONSENT = "reconsent"


class CredentialStatus(BaseModel):
    """Connection status of one provider for a country."""

    country: str
    provider: MailProvider
    configured: bool
    connected: bool
    usable: bool
    is_active_provider: bool = False
    mailbox: Optional[MailboxIdentity] = None
    expires_at: Optional[datetime] = None
    action: Optional[ConnectionAction] = None


class AuthorizationStart(BaseModel):
    """Where to send the user to authorize a mailbox."""

    authorization_url: str
    state: str


class OAuthCallback(BaseModel):
    """What the provider redirected back with."""

    state: str
    code: Optional[str] = Field(default=None, repr=False)
    error: Optional[str] = None
    error_description: Optional[str] = None


class AuthenticationOutcome(BaseModel):
    """API view of an AuthenticationResult (tokens never leave the service)."""

    ok: bool
    country: str
    provider: MailProvider
    mailbox: Optional[MailboxIdentity] = None
    reason: Optional[str] = None
    message: Optional[str] = None
