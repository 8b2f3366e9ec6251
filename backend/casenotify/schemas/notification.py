"""
Delivery schemas for status-change notifications.
"""

import enum
from typing import List, Optional

from pydantic import BaseModel, Field

from casenotify.core.exceptions import ProviderFailure
from casenotify.schemas.case import CaseSnapshot


class DeliveryStatus(str, enum.Enum):
    SENT = "sent"
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_NO_RECIPIENTS = "skipped_no_recipients"
    SKIPPED_NO_CREDENTIAL = "skipped_no_credential"
    FAILED = "failed"


class DeliveryResult(BaseModel):
    """
    What happened to one status-change notification.

    A send succeeds or fails as a unit against the resolved address list.
    """

    status: DeliveryStatus
    recipients: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
    credential_source: Optional[str] = None
    attempts: int = 0
    failure: Optional[ProviderFailure] = None
    error: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.status == DeliveryStatus.SENT


class StatusChangeRequest(BaseModel):
    """Sent by the booking workflow when a case moves to a new status."""

    case: CaseSnapshot
    new_status: str
    changed_by: Optional[str] = None
