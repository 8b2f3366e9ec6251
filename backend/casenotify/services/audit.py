"""
Audit logging service.

WHAT: Records who changed mailbox credentials and notification rules.

WHY: A rule change silently stops (or starts) emails to every hospital
in a country. When someone asks why, the audit trail names the actor
and the request.

HOW: Wraps AuditLogDAO and pulls the request id and client address from
the RequestContext middleware when called inside a request.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.dao.audit_log import AuditLogDAO
from casenotify.middleware.request_context import get_request_context
from casenotify.models.audit_log import AuditLog, AuditAction


# Logger for audit service errors (not audit events themselves)
logger = logging.getLogger(__name__)


SYSTEM_ACTOR = "system"


class AuditService:
    """
    Service for creating audit log entries.

    Example:
        audit = AuditService(db)
        await audit.log_event(AuditAction.NOTIFICATION_MATRIX_SAVED, "u-42", "Singapore")
    """

    def __init__(self, session: AsyncSession):
        self.dao = AuditLogDAO(session)

    async def log_event(
        self,
        action: AuditAction,
        actor: Optional[str],
        country: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Log an audit event.

        Returns:
            Created AuditLog or None if logging failed

        Note:
            Never raises. A failed audit write is logged to the
            application logger so it cannot block the change itself.
        """
        ctx = get_request_context()
        try:
            return await self.dao.log(
                action=action,
                actor=actor or SYSTEM_ACTOR,
                country=country,
                details=details,
                request_id=ctx.request_id if ctx else None,
                ip_address=ctx.ip_address if ctx else None,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to create audit log for {action.value}: {e}", exc_info=True)
            return None
