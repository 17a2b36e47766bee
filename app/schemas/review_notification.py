from typing import Any, Literal, Optional
from pydantic import BaseModel, UUID4
from datetime import datetime


NotificationType = Literal["booking", "message", "system"]


class NotificationBase(BaseModel):
    title: str
    message: str
    type: NotificationType
    link: Optional[str] = None
    data: Optional[Any] = None


class Notification(NotificationBase):
    id: UUID4
    user_id: UUID4
    read: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MarkAllReadResponse(BaseModel):
    marked_read: int
