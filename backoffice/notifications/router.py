"""Notification endpoints — list, mark read, unread count."""


from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth.dependencies import get_current_user
from backoffice.auth.models import User
from backoffice.database import get_db
from backoffice.notifications.schemas import NotificationListResponse, NotificationResponse
from backoffice.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / — list current user's notifications ───────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest first, with the unread count for the header badge."""
    items = await NotificationService.list_for_user(db, user.id, is_read=is_read, limit=limit)
    unread = await NotificationService.get_unread_count(db, user.id)
    return NotificationListResponse(
        data=[NotificationResponse.model_validate(n) for n in items],
        unread=unread,
    )


# ── POST /read-all — bulk mark all as read ───────────────────────────
# NOTE: registered before /{notification_id}/read.

@router.post("/read-all")
async def mark_all_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService.mark_all_read(db, user.id)
    return {"message": "All notifications marked as read", "data": {"count": count}}


# ── POST /{notification_id}/read — mark single as read ───────────────

@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService.mark_read(db, notification_id, user.id)
    return {
        "message": "Notification marked as read",
        "data": NotificationResponse.model_validate(notification).model_dump(mode="json"),
    }
