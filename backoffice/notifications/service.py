"""Notification service — in-app notifications and cross-module dispatchers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.common.constants import KYC_UPLOAD_FIELDS, NotificationType
from backoffice.common.exceptions import ForbiddenException, NotFoundException
from backoffice.notifications.models import Notification


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        user_id: int,
        user_email: str,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        link: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            user_id=user_id,
            user_email=user_email,
            type=type,
            title=title,
            message=message,
            link=link,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: int,
        *,
        is_read: Optional[bool] = None,
        limit: int = 50,
    ) -> list[Notification]:
        """Return a user's notifications, newest first."""
        query = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.id.desc())
            .limit(limit)
        )
        if is_read is not None:
            query = query.where(Notification.is_read.is_(is_read))
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: int,
        user_id: int,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        result = await db.execute(
            select(Notification).where(Notification.id == notification_id)
        )
        notification = result.scalars().first()

        if notification is None:
            raise NotFoundException("Notification", notification_id)

        if notification.user_id != user_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: int) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        result = await db.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(db: AsyncSession, user_id: int) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()


# ── Cross-module helper dispatchers ─────────────────────────────────


def document_display_name(document_type: str, index: Optional[int] = None) -> str:
    """``pan_card`` → "PAN Card"; education documents get their number."""
    if index is not None:
        return f"Education Document {index + 1}"
    if document_type in KYC_UPLOAD_FIELDS:
        return KYC_UPLOAD_FIELDS[document_type][0]
    return " ".join(word.capitalize() for word in document_type.split("_"))


async def notify_kyc_document_rejected(
    db: AsyncSession,
    user,  # backoffice.auth.models.User
    kyc,  # backoffice.kyc.models.Kyc
    document_type: str,
    remark: str,
    index: Optional[int] = None,
) -> Notification:
    """Tell the employee that one of their KYC documents needs re-uploading."""
    name = document_display_name(document_type, index)
    return await NotificationService.create_notification(
        db,
        user_id=user.id,
        user_email=user.email,
        type=NotificationType.error,
        title="KYC Document Rejected",
        message=f"Your {name} was rejected. Remark: {remark}. Please re-upload.",
        link="/profile",
        entity_type="kyc",
        entity_id=str(kyc.id),
    )
