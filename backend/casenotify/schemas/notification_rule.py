"""
Notification Rule Schemas.

WHAT: Canonical pydantic shapes for notification rules, plus the patch
and request bodies the configuration console sends.

WHY: Rules are persisted as JSON documents. Validating the whole
document here means a malformed template or address is rejected
before anything is written, and every read path sees one schema.

HOW: Pydantic v2 models with field validators. Templates are parsed by
the same Jinja2 environment that renders them, at save time, so the
renderer never has to fail.
"""

import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from casenotify.core.templating import check_placeholders
from casenotify.models.notification_rule import CaseStatus


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# RFC 5322 line length limit
MAX_SUBJECT_LENGTH = 998


def _unique(values: List[str], casefold: bool = False) -> List[str]:
    """Strip, drop blanks and dedupe while keeping first-seen order."""
    seen = set()
    result = []
    for value in values:
        value = value.strip()
        key = value.casefold() if casefold else value
        if value and key not in seen:
            seen.add(key)
            result.append(value)
    return result


class RecipientPolicy(BaseModel):
    """
    Who receives a notification for one rule.

    Role and department matching is done against the staff directory at
    send time. Explicit addresses are trusted literals.
    """

    roles: List[str] = Field(default_factory=list)
    explicit_addresses: List[str] = Field(default_factory=list)
    department_filter: List[str] = Field(default_factory=list)
    include_submitter: bool = False
    require_same_department: bool = False

    @field_validator("roles", "department_filter")
    @classmethod
    def _dedupe(cls, values: List[str]) -> List[str]:
        return _unique(values)

    @field_validator("explicit_addresses")
    @classmethod
    def _validate_addresses(cls, values: List[str]) -> List[str]:
        addresses = _unique(values, casefold=True)
        for address in addresses:
            if not EMAIL_PATTERN.match(address):
                raise ValueError(f"Invalid email address: {address!r}")
        return addresses


class MessageTemplate(BaseModel):
    """Subject and plain-text body with ``{{placeholder}}`` variables."""

    subject: str
    body: str = ""

    @field_validator("subject")
    @classmethod
    def _validate_subject(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Subject must not be empty")
        if "\n" in value or "\r" in value:
            raise ValueError("Subject must be a single line")
        if len(value) > MAX_SUBJECT_LENGTH:
            raise ValueError(f"Subject must be at most {MAX_SUBJECT_LENGTH} characters")
        return check_placeholders(value)

    @field_validator("body")
    @classmethod
    def _validate_body(cls, value: str) -> str:
        return check_placeholders(value)


class NotificationRule(BaseModel):
    """
    Notification rule for one (country, status) pair.

    ``status`` accepts any spelling CaseStatus.parse understands.
    """

    country: str = Field(min_length=1)
    status: CaseStatus
    enabled: bool = False
    recipients: RecipientPolicy = Field(default_factory=RecipientPolicy)
    template: MessageTemplate

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value):
        status = CaseStatus.parse(value)
        if status is None:
            raise ValueError(f"Unknown workflow status: {value!r}")
        return status


class RecipientPolicyPatch(BaseModel):
    """Partial recipient policy; only fields that are sent are applied."""

    roles: Optional[List[str]] = None
    explicit_addresses: Optional[List[str]] = None
    department_filter: Optional[List[str]] = None
    include_submitter: Optional[bool] = None
    require_same_department: Optional[bool] = None


class MessageTemplatePatch(BaseModel):
    subject: Optional[str] = None
    body: Optional[str] = None


class RulePatch(BaseModel):
    """
    Partial update for a single rule.

    Example:
        RulePatch(enabled=True, recipients={"roles": ["operations"]})
        changes enabled and roles and leaves everything else as stored.
    """

    enabled: Optional[bool] = None
    recipients: Optional[RecipientPolicyPatch] = None
    template: Optional[MessageTemplatePatch] = None


class RuleInput(BaseModel):
    """One rule in a full matrix save request; the country comes from the URL."""

    model_config = ConfigDict(extra="forbid")

    status: str
    enabled: bool = False
    recipients: RecipientPolicy = Field(default_factory=RecipientPolicy)
    template: MessageTemplate


class RuleMatrixUpdate(BaseModel):
    rules: List[RuleInput]


class TemplateVariable(BaseModel):
    """A placeholder the console can offer when editing a template."""

    name: str
    description: str
    aliases: List[str] = Field(default_factory=list)
