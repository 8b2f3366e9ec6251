"""
Notification Rule Data Access Object.

WHY: Rules are read a whole country at a time and written one
(country, status) row at a time. Both patterns live here so the rule
service stays free of SQL.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.dao.base import BaseDAO
from casenotify.models.notification_rule import NotificationRule, CaseStatus


class NotificationRuleDAO(BaseDAO[NotificationRule]):
    """Data Access Object for notification rule rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(NotificationRule, session)

    async def get_by_country(self, country: str) -> List[NotificationRule]:
        """
        All stored rules for a country in workflow order.

        WHY: One SELECT for the whole country, so a read never mixes rows
        from before and after a concurrent matrix save.
        """
        result = await self.session.execute(
            select(NotificationRule).where(NotificationRule.country == country)
        )
        order = {status: index for index, status in enumerate(CaseStatus)}
        return sorted(result.scalars().all(), key=lambda row: order[row.status])

    async def get_by_country_and_status(
        self, country: str, status: CaseStatus
    ) -> Optional[NotificationRule]:
        return await self.get_one(country=country, status=status)

    async def upsert(
        self,
        country: str,
        status: CaseStatus,
        enabled: bool,
        recipients: Dict[str, Any],
        template: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> NotificationRule:
        """
        Write one rule, updating the existing row when there is one.

        WHY: Reading before writing keeps the (country, status) unique
        constraint from turning a second save into a duplicate-row error.
        """
        values = dict(
            enabled=enabled,
            recipients=recipients,
            template=template,
            updated_by=updated_by,
        )
        existing = await self.get_by_country_and_status(country, status)
        if existing:
            return await self.update(existing, **values)
        return await self.create(country=country, status=status, **values)

    async def get_every_rule(self) -> List[NotificationRule]:
        """Every stored rule across all countries (used by the one-time normalization)."""
        result = await self.session.execute(select(NotificationRule))
        return list(result.scalars().all())
