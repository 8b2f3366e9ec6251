"""
Audit Log Data Access Object.

Append-only: there is no update or delete path for audit entries.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.dao.base import BaseDAO
from casenotify.models.audit_log import AuditLog, AuditAction


class AuditLogDAO(BaseDAO[AuditLog]):
    """Data Access Object for audit log entries."""

    def __init__(self, session: AsyncSession):
        super().__init__(AuditLog, session)

    async def log(
        self,
        action: AuditAction,
        actor: str,
        country: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        return await self.create(
            action=action,
            actor=actor,
            country=country,
            details=details,
            request_id=request_id,
            ip_address=ip_address,
        )

    async def get_by_country(self, country: str, limit: int = 100) -> List[AuditLog]:
        """Most recent entries for a country, newest first."""
        result = await self.session.execute(
            select(AuditLog)
            .where(AuditLog.country == country)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
