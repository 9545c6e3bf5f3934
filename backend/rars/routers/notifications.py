"""In-app notification inbox router."""

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.database import get_db
from rars.deps import _safe_error, get_current_principal
from rars.errors import UpstreamFailure
from rars.models.notification_models import (
    NotificationListResponse,
    NotificationResponse,
)
from rars.permissions import Principal
from rars.services.notification_service import NotificationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["notifications"])


@router.get("/me/notifications", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        rows = await NotificationService.list_for_user(db, principal.id, unread_only)
        unread = await NotificationService.unread_count(db, principal.id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing notifications", e)) from e
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in rows],
        unread=unread,
    )


@router.post(
    "/me/notifications/{notification_id}/read", response_model=NotificationResponse
)
async def mark_notification_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        notification = await NotificationService.mark_read(
            db, principal.id, notification_id
        )
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("updating notification", e)) from e
    return NotificationResponse.model_validate(notification)


@router.post("/me/notifications/read-all")
async def mark_all_notifications_read(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        updated = await NotificationService.mark_all_read(db, principal.id)
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("updating notifications", e)) from e
    return {"updated": updated}
