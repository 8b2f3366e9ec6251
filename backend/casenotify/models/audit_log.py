"""
Audit Log Model.

WHAT: Append-only record of configuration changes made through the console.

WHY: Changing who receives case notifications, or which mailbox sends
them, affects every hospital in a country. Each change records the actor
and the request it came from.

HOW: Uses JSON for flexible storage of change details.
"""

import enum

from sqlalchemy import Column, String, Enum, JSON

from casenotify.models.base import Base, TimestampMixin, PrimaryKeyMixin


class AuditAction(str, enum.Enum):
    """Enumeration of auditable configuration actions."""

    # Centralized credential
    ADMIN_EMAIL_CONFIG_SET = "ADMIN_EMAIL_CONFIG_SET"
    ADMIN_EMAIL_CONFIG_REMOVED = "ADMIN_EMAIL_CONFIG_REMOVED"
    ADMIN_EMAIL_CONFIG_TESTED = "ADMIN_EMAIL_CONFIG_TESTED"

    # Per-user mailbox
    MAILBOX_CONNECTED = "MAILBOX_CONNECTED"
    MAILBOX_DISCONNECTED = "MAILBOX_DISCONNECTED"

    # Notification rules
    NOTIFICATION_RULE_UPDATED = "NOTIFICATION_RULE_UPDATED"
    NOTIFICATION_MATRIX_SAVED = "NOTIFICATION_MATRIX_SAVED"


class AuditLog(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Immutable audit log entry.

    Attributes:
        action: What happened
        actor: Who did it (console user id, or "system" for jobs)
        country: Country scope affected
        request_id / ip_address: Request context, when inside a request
        details: Extra JSON context (never token values)
    """

    __tablename__ = "audit_logs"

    action = Column(Enum(AuditAction), nullable=False, index=True)
    actor = Column(String(255), nullable=False)
    country = Column(String(100), nullable=True, index=True)
    request_id = Column(String(64), nullable=True)
    ip_address = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(action={self.action}, actor={self.actor!r}, country={self.country!r})>"
