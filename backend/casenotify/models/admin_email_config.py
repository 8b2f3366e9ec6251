"""
Centralized (admin) email credential model.

WHAT: One credential per country, set by an administrator and used for
every automated notification sent for that country.

WHY: Automated sends must not depend on whichever console user last
connected a mailbox. When this row exists it takes precedence over any
per-user credential.
"""

from sqlalchemy import Column, String, Text, DateTime, Boolean, Enum

from casenotify.models.base import Base, PrimaryKeyMixin, TimestampMixin
from casenotify.models.email_credential import MailProvider


class AdminEmailConfig(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Centralized mail credential for a country.

    Attributes:
        country: Country scope (unique)
        provider: Mail provider
        client_id: OAuth client the tokens were issued to
        tenant_id: Microsoft tenant (None for Google)
        access_token_encrypted / refresh_token_encrypted: Fernet-encrypted tokens
        expires_at: Access token expiry (naive UTC)
        from_email / from_name: Sender shown on automated notifications
        is_active: Soft switch; inactive rows are ignored by delivery
        updated_by: Actor who last set the credential
    """

    __tablename__ = "admin_email_configs"

    country = Column(String(100), nullable=False, unique=True, index=True)
    provider = Column(Enum(MailProvider), nullable=False)

    client_id = Column(String(255), nullable=False)
    tenant_id = Column(String(255), nullable=True)

    access_token_encrypted = Column(Text, nullable=False)
    refresh_token_encrypted = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=False)

    from_email = Column(String(255), nullable=False)
    from_name = Column(String(255), nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    updated_by = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AdminEmailConfig(country={self.country!r}, provider={self.provider})>"
