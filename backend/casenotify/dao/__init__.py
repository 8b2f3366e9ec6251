"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from casenotify.dao.base import BaseDAO
from casenotify.dao.email_credential import EmailCredentialDAO
from casenotify.dao.admin_email_config import AdminEmailConfigDAO
from casenotify.dao.notification_rule import NotificationRuleDAO
from casenotify.dao.app_setting import AppSettingDAO
from casenotify.dao.audit_log import AuditLogDAO

__all__ = [
    "BaseDAO",
    "EmailCredentialDAO",
    "AdminEmailConfigDAO",
    "NotificationRuleDAO",
    "AppSettingDAO",
    "AuditLogDAO",
]
