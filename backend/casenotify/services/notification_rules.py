"""
Notification Rule Service.

WHAT: The per-country rule matrix: one rule per workflow status, with
defaults for anything not yet saved.

WHY: New countries are onboarded all the time. Generating the matrix
from the CaseStatus enumeration means a country never has a gap, and
nothing is written until an administrator actually saves.

HOW:
- get_rules() reads the whole country in one SELECT and fills missing
  statuses with default_rule(); defaults are never persisted by a read
- update_rule() merges a patch into one rule and upserts that row only
- save_matrix() validates every rule before writing any of them, then
  upserts the full matrix inside the caller's transaction
- Stored recipient documents go through normalize_recipients(), so legacy
  key names are understood on read and rewritten by normalize_stored_rules()
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.core.exceptions import DatabaseError, ValidationError
from casenotify.dao.notification_rule import NotificationRuleDAO
from casenotify.models.audit_log import AuditAction
from casenotify.models.notification_rule import CaseStatus
from casenotify.models.notification_rule import NotificationRule as NotificationRuleRow
from casenotify.schemas.notification_rule import (
    EMAIL_PATTERN,
    MessageTemplate,
    NotificationRule,
    RecipientPolicy,
    RuleInput,
    RulePatch,
)
from casenotify.services.audit import AuditService, SYSTEM_ACTOR
from casenotify.services.fallback_cache import BoundedTTLCache


logger = logging.getLogger(__name__)


DEFAULT_SUBJECT_PREFIX = "Case Status Update: "
DEFAULT_BODY_LINES = [
    "Case Reference: {{caseReference}}",
    "Hospital: {{hospital}}",
    "Date: {{dateOfSurgery}}",
    "Submitted by: {{submittedBy}}",
    "",
    "Best regards,",
    "Case Booking System",
]

# Legacy recipient keys, newest spelling first
_ADDRESS_KEYS = ("explicit_addresses", "explicitAddresses", "specificEmails", "members")
_DEPARTMENT_KEYS = ("department_filter", "departmentFilter", "departments")
_FLAG_KEYS = {
    "include_submitter": ("include_submitter", "includeSubmitter"),
    "require_same_department": ("require_same_department", "requireSameDepartment"),
}
ALL_DEPARTMENTS = "all"


def default_template(status: CaseStatus) -> MessageTemplate:
    body = "\n".join([f"A case has been updated to status: {status.value}", ""] + DEFAULT_BODY_LINES)
    return MessageTemplate(subject=f"{DEFAULT_SUBJECT_PREFIX}{status.value}", body=body)


def default_rule(country: str, status: CaseStatus) -> NotificationRule:
    """Disabled rule with no recipients and the generic template."""
    return NotificationRule(
        country=country,
        status=status,
        enabled=False,
        recipients=RecipientPolicy(),
        template=default_template(status),
    )


def default_matrix(country: str) -> List[NotificationRule]:
    return [default_rule(country, status) for status in CaseStatus]


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value if item is not None]


def normalize_recipients(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Map a stored recipient document, in any historical shape, to the
    canonical RecipientPolicy fields.

    Legacy shapes:
        members / specificEmails      -> explicit_addresses
        departments / departmentFilter -> department_filter ("all" = no filter)
        includeSubmitter, requireSameDepartment -> snake_case flags

    Addresses that are not valid mailboxes are dropped with a warning.
    """
    raw = raw or {}

    addresses: List[str] = []
    for key in _ADDRESS_KEYS:
        addresses.extend(_as_list(raw.get(key)))
    valid_addresses = []
    for address in addresses:
        if EMAIL_PATTERN.match(address.strip()):
            valid_addresses.append(address.strip())
        else:
            logger.warning(f"Dropping invalid stored recipient address {address!r}")

    departments: List[str] = []
    for key in _DEPARTMENT_KEYS:
        departments.extend(_as_list(raw.get(key)))
    if any(department.strip().lower() == ALL_DEPARTMENTS for department in departments):
        departments = []

    canonical = {
        "roles": _as_list(raw.get("roles")),
        "explicit_addresses": valid_addresses,
        "department_filter": departments,
    }
    for field, keys in _FLAG_KEYS.items():
        canonical[field] = any(bool(raw.get(key)) for key in keys)

    return RecipientPolicy.model_validate(canonical).model_dump()


def _schema_errors(exc: SchemaValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]


def parse_status(status: Union[str, CaseStatus]) -> CaseStatus:
    """
    Raises:
        ValidationError: Not a known workflow status
    """
    parsed = CaseStatus.parse(status)
    if parsed is None:
        raise ValidationError(message=f"Unknown workflow status: {status}", status=str(status))
    return parsed


class NotificationRuleService:
    """
    Service for reading and saving a country's rule matrix.

    Example:
        service = NotificationRuleService(db, cache=app.state.fallback_cache)
        rules = await service.get_rules("Singapore")
        await service.update_rule("Singapore", "CaseBooked", RulePatch(enabled=True), actor="u-1")
    """

    def __init__(self, session: AsyncSession, cache: Optional[BoundedTTLCache] = None):
        self.session = session
        self.dao = NotificationRuleDAO(session)
        self.audit = AuditService(session)
        self._cache = cache

    @staticmethod
    def _cache_key(country: str):
        return ("rules", country)

    def _to_schema(self, row: NotificationRuleRow) -> NotificationRule:
        try:
            template = MessageTemplate.model_validate(row.template or {})
        except SchemaValidationError:
            logger.warning(
                f"Stored template for {row.country}/{row.status.value} is invalid; using default"
            )
            template = default_template(row.status)
        return NotificationRule(
            country=row.country,
            status=row.status,
            enabled=bool(row.enabled),
            recipients=RecipientPolicy.model_validate(normalize_recipients(row.recipients)),
            template=template,
        )

    async def get_rules(self, country: str) -> List[NotificationRule]:
        """
        The complete matrix for a country in workflow order.

        Missing statuses are filled with defaults that are not persisted.
        If the database is unreachable, the last matrix read is served
        from the fallback cache.

        Raises:
            DatabaseError: Database unreachable and nothing cached
        """
        try:
            rows = await self.dao.get_by_country(country)
        except SQLAlchemyError as e:
            cached = self._cache.get(self._cache_key(country)) if self._cache else None
            if cached is not None:
                logger.warning(f"Rule lookup failed for {country}; serving cached matrix")
                return [rule.model_copy(deep=True) for rule in cached]
            raise DatabaseError(message="Failed to load notification rules", country=country) from e

        stored = {row.status: self._to_schema(row) for row in rows}
        rules = [stored.get(status) or default_rule(country, status) for status in CaseStatus]
        if self._cache is not None:
            self._cache.set(self._cache_key(country), [rule.model_copy(deep=True) for rule in rules])
        return rules

    async def get_rule(self, country: str, status: Union[str, CaseStatus]) -> NotificationRule:
        """
        One rule, read through the country's matrix and its fallback cache entry.

        Raises:
            DatabaseError: Database unreachable and nothing cached
        """
        status = parse_status(status)
        for rule in await self.get_rules(country):
            if rule.status == status:
                return rule
        return default_rule(country, status)

    async def update_rule(
        self,
        country: str,
        status: Union[str, CaseStatus],
        patch: Union[RulePatch, Dict[str, Any]],
        actor: Optional[str] = None,
    ) -> NotificationRule:
        """
        Apply the fields present in ``patch`` to one rule.

        A rule that was never saved starts from its default. Sibling
        rules are not touched.

        Raises:
            ValidationError: Unknown status, or the patched rule is invalid
        """
        status = parse_status(status)
        try:
            if not isinstance(patch, RulePatch):
                patch = RulePatch.model_validate(patch)
            changes = patch.model_dump(exclude_unset=True)
            merged = (await self.get_rule(country, status)).model_dump()
            for section in ("recipients", "template"):
                merged[section].update(changes.pop(section, None) or {})
            merged.update(changes)
            rule = NotificationRule.model_validate(merged)
        except SchemaValidationError as e:
            raise ValidationError(
                message="Invalid notification rule", country=country, errors=_schema_errors(e)
            ) from e

        await self._write(rule, actor)
        self._invalidate(country)
        await self.audit.log_event(
            AuditAction.NOTIFICATION_RULE_UPDATED,
            actor,
            country,
            {"status": status.value, "fields": sorted(patch.model_dump(exclude_unset=True))},
        )
        logger.info(f"Notification rule {country}/{status.value} updated")
        return rule

    def validate_matrix(
        self, country: str, rules: Iterable[Union[NotificationRule, RuleInput, Dict[str, Any]]]
    ) -> List[NotificationRule]:
        """
        Validate a full matrix without writing anything.

        Statuses that are not listed are reset to their defaults.

        Raises:
            ValidationError: Invalid rule, duplicate status or a rule for another country
        """
        by_status: Dict[CaseStatus, NotificationRule] = {}
        for index, item in enumerate(rules):
            data = item.model_dump() if hasattr(item, "model_dump") else dict(item)
            rule_country = data.setdefault("country", country)
            if rule_country != country:
                raise ValidationError(
                    message=f"Rule {index} belongs to {rule_country}, not {country}",
                    country=country,
                )
            try:
                rule = NotificationRule.model_validate(data)
            except SchemaValidationError as e:
                raise ValidationError(
                    message=f"Invalid notification rule at position {index}",
                    country=country,
                    errors=_schema_errors(e),
                ) from e
            if rule.status in by_status:
                raise ValidationError(
                    message=f"Duplicate rule for status {rule.status.value}",
                    country=country,
                )
            by_status[rule.status] = rule

        return [by_status.get(status) or default_rule(country, status) for status in CaseStatus]

    async def save_matrix(
        self,
        country: str,
        rules: Iterable[Union[NotificationRule, RuleInput, Dict[str, Any]]],
        actor: Optional[str] = None,
    ) -> List[NotificationRule]:
        """
        Replace the country's whole matrix.

        Everything is validated first, so a bad rule means nothing is
        written. The writes share the caller's transaction; readers see
        either the old matrix or the new one.

        Raises:
            ValidationError: See validate_matrix()
            DatabaseError: A write failed (the transaction must be rolled back)
        """
        matrix = self.validate_matrix(country, rules)
        try:
            for rule in matrix:
                await self._write(rule, actor)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save notification matrix for {country}: {e}")
            raise DatabaseError(message="Failed to save notification rules", country=country) from e

        if self._cache is not None:
            self._cache.set(self._cache_key(country), [rule.model_copy(deep=True) for rule in matrix])
        await self.audit.log_event(
            AuditAction.NOTIFICATION_MATRIX_SAVED,
            actor,
            country,
            {"enabled": [rule.status.value for rule in matrix if rule.enabled]},
        )
        logger.info(f"Notification matrix saved for {country}")
        return matrix

    async def normalize_stored_rules(self) -> int:
        """
        Rewrite stored recipient documents that use a legacy shape.

        Safe to run more than once.

        Returns:
            Number of rows rewritten
        """
        rewritten = 0
        for row in await self.dao.get_every_rule():
            canonical = normalize_recipients(row.recipients)
            if canonical != row.recipients:
                await self.dao.update(row, recipients=canonical, updated_by=SYSTEM_ACTOR)
                self._invalidate(row.country)
                rewritten += 1
        logger.info(f"Normalized {rewritten} stored notification rules")
        return rewritten

    async def _write(self, rule: NotificationRule, actor: Optional[str]) -> None:
        await self.dao.upsert(
            country=rule.country,
            status=rule.status,
            enabled=rule.enabled,
            recipients=rule.recipients.model_dump(),
            template=rule.template.model_dump(),
            updated_by=actor,
        )

    def _invalidate(self, country: str) -> None:
        if self._cache is not None:
            self._cache.pop(self._cache_key(country))
