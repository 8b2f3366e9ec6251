"""
Notification rule model.

WHAT: One row per (country, workflow status) holding the enabled flag,
the recipient policy and the message template for that status.

WHY: Each country configures who hears about each step of the case
workflow. The full matrix is fixed by the CaseStatus enumeration, so a
country with no rows simply gets generated defaults until it saves.

HOW: Recipients and template are JSON documents validated by the
pydantic schemas in casenotify.schemas.notification_rule before they
are written. The unique constraint backs the read-then-update/insert
upsert done by NotificationRuleDAO.
"""

import enum
import re
from typing import Optional

from sqlalchemy import Column, String, Boolean, Enum, JSON, UniqueConstraint

from casenotify.models.base import Base, PrimaryKeyMixin, TimestampMixin


class CaseStatus(str, enum.Enum):
    """
    Case workflow statuses that can trigger a notification.

    Declaration order is the workflow order; the last two are terminal.
    """

    CASE_BOOKED = "Case Booked"
    ORDER_PREPARATION = "Order Preparation"
    ORDER_DELIVERED = "Order Delivered"
    ORDER_RECEIVED = "Order Received"
    CASE_COMPLETED = "Case Completed"
    ORDER_DELIVERED_OFFICE = "Order Delivered (Office)"
    TO_BE_BILLED = "To be billed"
    CASE_CLOSED = "Case Closed"
    CASE_CANCELLED = "Case Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (CaseStatus.CASE_CLOSED, CaseStatus.CASE_CANCELLED)

    @classmethod
    def parse(cls, value: "str | CaseStatus") -> Optional["CaseStatus"]:
        """
        Look up a status by value or member name, ignoring case and punctuation.

        "Case Booked", "CaseBooked", "case-booked" and "CASE_BOOKED" all
        resolve to CASE_BOOKED. Returns None when nothing matches.
        """
        if isinstance(value, cls):
            return value
        wanted = _status_key(str(value))
        for status in cls:
            if wanted in (_status_key(status.value), _status_key(status.name)):
                return status
        return None


def _status_key(text: str) -> str:
    return re.sub(r"[^a-z]", "", text.lower())


class NotificationRule(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Notification rule for one (country, status) pair.

    Attributes:
        country: Country scope
        status: Workflow status this rule fires on
        enabled: Whether a status change sends anything at all
        recipients: Canonical recipient policy document (JSON)
        template: {"subject": ..., "body": ...} (JSON)
        updated_by: Actor who last saved the rule
    """

    __tablename__ = "notification_rules"

    country = Column(String(100), nullable=False, index=True)
    status = Column(Enum(CaseStatus), nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)
    recipients = Column(JSON, nullable=False, default=dict)
    template = Column(JSON, nullable=False, default=dict)
    updated_by = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("country", "status", name="uq_notification_rule_country_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationRule(country={self.country!r}, status={self.status}, "
            f"enabled={self.enabled})>"
        )
