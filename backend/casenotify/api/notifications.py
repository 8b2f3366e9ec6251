"""
Notification API endpoints.

WHAT: Entry point the booking workflow calls when a case changes status.

HOW: Hands the case snapshot to NotificationDispatcher and returns the
DeliveryResult. Skipped and failed deliveries are 200 responses; the
result says what happened.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from casenotify.core.deps import Actor, get_db, get_dispatcher, require_admin
from casenotify.core.exceptions import ValidationError
from casenotify.schemas.notification import DeliveryResult, StatusChangeRequest
from casenotify.services.notification_dispatcher import NotificationDispatcher


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post(
    "/{country}/status-change",
    response_model=DeliveryResult,
    summary="Notify a case status change",
)
async def notify_status_change(
    body: StatusChangeRequest,
    country: str = Path(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_admin),
) -> DeliveryResult:
    case = body.case
    if case.country and case.country != country:
        raise ValidationError(
            message=f"Case belongs to {case.country}, not {country}", country=country
        )
    case = case.model_copy(update={"country": country})
    result = await dispatcher.process_status_change(
        case, body.new_status, changed_by=body.changed_by or actor.id
    )
    # token refreshes during the send are persisted
    await db.commit()
    return result
