from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import UserProfile
from app.schemas.booking import Booking as BookingSchema, BookingCreate, BookingInvite
from app.schemas.common import PaginatedResponse, paginate
from app.services import bookings
from app.services.assistant import AssistantClient, get_assistant_client
from app.services.confirmation_pdf import render_booking_confirmation
from app.services.venues import get_venue

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ---------------------------------------------------------------------------
# POST /bookings: submit a booking request
# ---------------------------------------------------------------------------


@router.post("/", response_model=BookingSchema, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """
    Request a venue for a date, optionally for a time window.

    The booking starts as `pending`. The venue owner and the customer both get
    a notification; the owner then confirms or cancels it.
    """
    return bookings.create_booking_request(db, current_user.id, data)


# ---------------------------------------------------------------------------
# GET /bookings: the customer's own bookings
# ---------------------------------------------------------------------------


@router.get("/", response_model=PaginatedResponse[BookingSchema])
def my_bookings(
    status: Optional[str] = Query(None, description="pending | confirmed | cancelled"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    items, total = bookings.list_customer_bookings(db, current_user.id, status=status, page=page, limit=limit)
    return paginate(items, total, page, limit)


@router.get("/{booking_id}", response_model=BookingSchema)
def booking_detail(
    booking_id: UUID,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    return bookings.get_booking_for_user(db, booking_id, current_user.id)


# ---------------------------------------------------------------------------
# Confirmation PDF and invites
# ---------------------------------------------------------------------------


@router.get("/{booking_id}/confirmation.pdf", response_class=Response)
def booking_confirmation_pdf(
    booking_id: UUID,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    booking = bookings.get_booking_for_user(db, booking_id, current_user.id)
    filename, content = render_booking_confirmation(booking, get_venue(db, booking.venue_id))
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{booking_id}/invites")
def send_invites(
    booking_id: UUID,
    data: BookingInvite,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
    client: AssistantClient = Depends(get_assistant_client),
):
    """Email the booking details to guests. Delivery is best effort."""
    booking = bookings.get_booking_for_user(db, booking_id, current_user.id)
    venue = get_venue(db, booking.venue_id)
    sent = client.send_booking_invite(
        booking,
        data.emails,
        message=data.message,
        host_name=current_user.full_name or None,
        address=venue.address or None,
    )
    return {"sent": sent}
