from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import UserProfile
from app.schemas.user import User as UserSchema, UserUpdate
from app.schemas.review_notification import Notification as NotificationSchema, MarkAllReadResponse
from app.schemas.common import CountResponse, PaginatedResponse, paginate
from app.services import notifications

router = APIRouter(prefix="/me", tags=["Me"])


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/", response_model=UserSchema)
def get_me(current_user: UserProfile = Depends(get_current_user)):
    """Return the authenticated user's profile."""
    return current_user


@router.patch("/", response_model=UserSchema)
def update_me(
    data: UserUpdate,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """Update name, phone and profile image."""
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(current_user, field, value)
    db.commit()
    db.refresh(current_user)
    return current_user


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@router.get("/notifications", response_model=PaginatedResponse[NotificationSchema])
def list_notifications(
    unread_only: bool = Query(False, description="Return only unread notifications"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """Return the current user's notifications, newest first."""
    total = notifications.count_notifications(db, current_user.id, unread_only=unread_only)
    items = notifications.list_notifications(
        db, current_user.id, limit=limit, unread_only=unread_only, offset=(page - 1) * limit
    )
    return paginate(items, total, page, limit)


@router.get("/notifications/unread-count", response_model=CountResponse)
def unread_count(
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    return CountResponse(count=notifications.count_unread(db, current_user.id))


@router.patch("/notifications/read-all", response_model=MarkAllReadResponse)
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """Mark all notifications for the current user as read."""
    return MarkAllReadResponse(marked_read=notifications.mark_all_read(db, current_user.id))


@router.patch("/notifications/{notif_id}/read", response_model=NotificationSchema)
def mark_notification_read(
    notif_id: UUID,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """Mark a single notification as read. Already-read notifications are returned unchanged."""
    return notifications.mark_read(db, notif_id, user_id=current_user.id)
