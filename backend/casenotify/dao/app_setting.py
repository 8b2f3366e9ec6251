"""
App Setting Data Access Object.

WHY: The key-value persistence boundary: point lookups and upserts by
(owner, setting_name).
"""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.dao.base import BaseDAO
from casenotify.models.app_setting import AppSetting


class AppSettingDAO(BaseDAO[AppSetting]):
    """Data Access Object for key-value settings."""

    def __init__(self, session: AsyncSession):
        super().__init__(AppSetting, session)

    async def get_value(self, owner: str, setting_name: str, default: Any = None) -> Any:
        setting = await self.get_one(owner=owner, setting_name=setting_name)
        if setting is None:
            return default
        return setting.setting_value

    async def set_value(self, owner: str, setting_name: str, value: Any) -> AppSetting:
        existing = await self.get_one(owner=owner, setting_name=setting_name)
        if existing:
            return await self.update(existing, setting_value=value)
        return await self.create(owner=owner, setting_name=setting_name, setting_value=value)

    async def delete_value(self, owner: str, setting_name: str) -> bool:
        existing: Optional[AppSetting] = await self.get_one(owner=owner, setting_name=setting_name)
        if not existing:
            return False
        await self.delete(existing)
        return True
