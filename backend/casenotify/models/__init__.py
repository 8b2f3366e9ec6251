"""
Database models package.

WHY: Importing every model here registers it on Base.metadata, so
create_all (application startup and tests) sees the whole schema.
"""

from casenotify.models.base import Base, TimestampMixin, PrimaryKeyMixin, utcnow
from casenotify.models.email_credential import EmailCredential, MailProvider
from casenotify.models.admin_email_config import AdminEmailConfig
from casenotify.models.notification_rule import NotificationRule, CaseStatus
from casenotify.models.app_setting import AppSetting, country_owner
from casenotify.models.audit_log import AuditLog, AuditAction

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "utcnow",
    "EmailCredential",
    "MailProvider",
    "AdminEmailConfig",
    "NotificationRule",
    "CaseStatus",
    "AppSetting",
    "country_owner",
    "AuditLog",
    "AuditAction",
]
