"""Notification Pydantic schemas for responses."""


from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from backoffice.common.constants import NotificationType


class NotificationResponse(BaseModel):
    """Single notification in API responses."""

    id: int
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    data: list[NotificationResponse]
    unread: int
