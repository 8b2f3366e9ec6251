"""
Per-user mailbox credential model.

WHAT: Stores the OAuth tokens a console user obtained by connecting a
mailbox for a country, one row per (country, provider).

WHY: Notifications are sent from a real mailbox. Before a centralized
admin credential exists for a country, the most recently connected
mailbox for the active provider is what the delivery path uses.

HOW: Tokens are encrypted with Fernet before they reach this table
(see EmailCredentialDAO). Re-authorization supersedes the whole row.
"""

import enum

from sqlalchemy import Column, String, Text, DateTime, Enum, UniqueConstraint

from casenotify.models.base import Base, PrimaryKeyMixin, TimestampMixin


class MailProvider(str, enum.Enum):
    """Supported mail providers."""

    MICROSOFT = "microsoft"
    GOOGLE = "google"


class EmailCredential(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Mailbox credential for one (country, provider) pair.

    Attributes:
        country: Country scope the mailbox sends for
        provider: Mail provider the tokens belong to
        access_token_encrypted: Fernet-encrypted access token
        refresh_token_encrypted: Fernet-encrypted refresh token (optional)
        expires_at: When the access token expires (naive UTC)
        mailbox_address: Authenticated mailbox address
        mailbox_name: Mailbox owner's display name from the provider
        display_name: Sender name shown to recipients
    """

    __tablename__ = "email_credentials"

    country = Column(String(100), nullable=False, index=True)
    provider = Column(Enum(MailProvider), nullable=False)

    access_token_encrypted = Column(Text, nullable=False)
    refresh_token_encrypted = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=False)

    mailbox_address = Column(String(255), nullable=False)
    mailbox_name = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("country", "provider", name="uq_email_credential_country_provider"),
    )

    def __repr__(self) -> str:
        return (
            f"<EmailCredential(country={self.country!r}, provider={self.provider}, "
            f"mailbox={self.mailbox_address!r})>"
        )
