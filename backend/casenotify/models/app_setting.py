"""
Key-value application setting model.

WHAT: Settings records keyed by (owner, setting_name).

WHY: Small per-owner preferences do not deserve their own table. The
owner is a user id for personal preferences or ``country:<name>`` for
country-wide ones such as which mail provider is active.
"""

from sqlalchemy import Column, String, JSON, UniqueConstraint

from casenotify.models.base import Base, PrimaryKeyMixin, TimestampMixin


COUNTRY_OWNER_PREFIX = "country:"


def country_owner(country: str) -> str:
    """Owner key for a country-wide setting."""
    return f"{COUNTRY_OWNER_PREFIX}{country}"


class AppSetting(Base, PrimaryKeyMixin, TimestampMixin):
    """A single (owner, setting_name) -> JSON value record."""

    __tablename__ = "app_settings"

    owner = Column(String(255), nullable=False, index=True)
    setting_name = Column(String(100), nullable=False)
    setting_value = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("owner", "setting_name", name="uq_app_setting_owner_name"),
    )

    def __repr__(self) -> str:
        return f"<AppSetting(owner={self.owner!r}, name={self.setting_name!r})>"
