from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import UserProfile
from app.schemas.booking import Booking as BookingSchema, BookingStatusUpdate
from app.schemas.common import PaginatedResponse, paginate
from app.services import bookings
from app.services.booking_status import booking_status_workflow

router = APIRouter(prefix="/owner/bookings", tags=["Owner - Bookings"])


@router.get("/", response_model=PaginatedResponse[BookingSchema])
def owner_bookings(
    status: Optional[str] = Query(None, description="pending | confirmed | cancelled"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """Bookings on every venue whose owner info names the current user."""
    items, total = bookings.list_owner_bookings(db, current_user.id, status=status, page=page, limit=limit)
    return paginate(items, total, page, limit)


@router.patch("/{booking_id}/status", response_model=BookingSchema)
def update_booking_status(
    booking_id: UUID,
    data: BookingStatusUpdate,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """
    Confirm or cancel a booking.

    - 403 if the caller does not own the venue
    - 409 for a transition out of `cancelled` or back to `pending`
    - 429 while another status update is still running
    - Setting the status the booking already has is a no-op
    """
    return booking_status_workflow.update_status(db, booking_id, data.status, current_user.id)
