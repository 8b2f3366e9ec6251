"""
Notification Rule API endpoints.

WHAT: Read and edit a country's notification rule matrix.

HOW: FastAPI router over NotificationRuleService. GET never writes
(defaults are generated, not stored); PUT replaces the whole matrix;
PATCH changes one status.
"""

from typing import List

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.core.deps import Actor, get_db, get_rule_service, require_admin
from casenotify.schemas.notification_rule import (
    NotificationRule,
    RuleMatrixUpdate,
    RulePatch,
    TemplateVariable,
)
from casenotify.services.notification_rules import NotificationRuleService
from casenotify.services.template_renderer import available_variables


router = APIRouter(prefix="/notification-rules", tags=["notification-rules"])


@router.get(
    "/variables",
    response_model=List[TemplateVariable],
    summary="Template variables",
)
async def list_template_variables(
    actor: Actor = Depends(require_admin),
) -> List[TemplateVariable]:
    return available_variables()


@router.get(
    "/{country}",
    response_model=List[NotificationRule],
    summary="Get rule matrix",
)
async def get_rules(
    country: str = Path(..., min_length=1),
    service: NotificationRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_admin),
) -> List[NotificationRule]:
    """One rule per workflow status, in workflow order."""
    return await service.get_rules(country)


@router.put(
    "/{country}",
    response_model=List[NotificationRule],
    summary="Save rule matrix",
)
async def save_rules(
    body: RuleMatrixUpdate,
    country: str = Path(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    service: NotificationRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_admin),
) -> List[NotificationRule]:
    """
    Replace the whole matrix.

    Statuses left out are reset to their defaults. One invalid rule
    rejects the request and nothing is written.
    """
    matrix = await service.save_matrix(country, body.rules, actor=actor.id)
    await db.commit()
    return matrix


@router.patch(
    "/{country}/{status}",
    response_model=NotificationRule,
    summary="Update one rule",
)
async def update_rule(
    patch: RulePatch,
    country: str = Path(..., min_length=1),
    status: str = Path(..., description="Workflow status, e.g. 'Case Booked' or 'CaseBooked'"),
    db: AsyncSession = Depends(get_db),
    service: NotificationRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_admin),
) -> NotificationRule:
    rule = await service.update_rule(country, status, patch, actor=actor.id)
    await db.commit()
    return rule
