"""
Admin (centralized) email credential schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from casenotify.core.exceptions import ProviderFailure
from casenotify.models.base import as_utc_naive
from casenotify.models.email_credential import MailProvider
from casenotify.schemas.credential import ConnectionAction, TokenSet
from casenotify.schemas.notification_rule import EMAIL_PATTERN


class AdminEmailCredential(BaseModel):
    """
    Centralized credential used for every automated send in a country.

    Not tied to any console user's session.
    """

    country: str
    provider: MailProvider
    client_id: str
    tenant_id: Optional[str] = None
    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: datetime
    from_email: str
    from_name: str

    def with_tokens(self, tokens: TokenSet) -> "AdminEmailCredential":
        return self.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or self.refresh_token,
                "expires_at": tokens.expires_at,
            }
        )


class AdminEmailConfigUpdate(BaseModel):
    """Request body for setting a country's admin credential."""

    provider: MailProvider
    client_id: str = Field(min_length=1)
    tenant_id: Optional[str] = None
    access_token: str = Field(min_length=1, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: datetime
    from_email: str
    from_name: str = Field(min_length=1)

    @field_validator("expires_at")
    @classmethod
    def _normalize_expiry(cls, value: datetime) -> datetime:
        return as_utc_naive(value)

    @field_validator("from_email")
    @classmethod
    def _validate_from_email(cls, value: str) -> str:
        value = value.strip()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("from_email must be a valid email address")
        return value


class AdminEmailConfigResponse(BaseModel):
    """Admin credential as shown in the console (no tokens)."""

    country: str
    provider: MailProvider
    client_id: str
    tenant_id: Optional[str] = None
    from_email: str
    from_name: str
    expires_at: datetime


class AdminEmailTestRequest(BaseModel):
    test_address: str

    @field_validator("test_address")
    @classmethod
    def _validate_test_address(cls, value: str) -> str:
        value = value.strip()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("test_address must be a valid email address")
        return value


class AdminEmailTestResult(BaseModel):
    """
    Outcome of a live test send.

    ``failure`` tells an expired token apart from a permission problem
    so the console can offer reconnect or re-consent.
    """

    success: bool
    error: Optional[str] = None
    failure: Optional[ProviderFailure] = None
    action: Optional[ConnectionAction] = None
