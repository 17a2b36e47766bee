"""
Booking requests.

A request is created ``pending``; the venue owner then confirms or cancels it
through ``app.services.booking_status``.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import BackendUnavailableError, ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from app.db.session import backend_errors
from app.models.booking import Booking, BookingStatus
from app.schemas.booking import BookingCreate
from app.services import notifications
from app.services.blocked_dates import find_conflicting_block
from app.services.realtime import EventType, RealtimeBroker, broker as default_broker
from app.services.venues import is_venue_owner, load_venue, owned_venue_ids, venue_owner_id

logger = logging.getLogger(__name__)

TABLE = "bookings"


def quote_total(venue, guests: int) -> Decimal:
    if venue.price_per_person:
        return Decimal(venue.price_per_person) * guests
    return Decimal(venue.starting_price or 0)


def create_booking_request(db: Session, user_id, data: BookingCreate,
                           policy: Optional[notifications.RetryPolicy] = None,
                           broker: RealtimeBroker = default_broker) -> Booking:
    if data.guests < 1:
        raise InvalidInputError("At least one guest is required")
    if bool(data.start_time) != bool(data.end_time):
        raise InvalidInputError("Give both a start and an end time, or neither")
    if data.start_time and data.end_time and data.end_time <= data.start_time:
        raise InvalidInputError("End time must be after start time")

    venue = load_venue(db, data.venue_id)

    block = find_conflicting_block(db, venue.id, data.booking_date, data.start_time, data.end_time)
    if block:
        raise ConflictError("The venue is not available at the selected date and time")

    booking = Booking(
        user_id=user_id,
        venue_id=venue.id,
        venue_name=venue.name,
        booking_date=data.booking_date,
        start_time=data.start_time,
        end_time=data.end_time,
        guests=data.guests,
        status=BookingStatus.PENDING.value,
        total_price=quote_total(venue, data.guests),
        special_requests=data.special_requests,
    )
    try:
        db.add(booking)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create booking for venue %s", venue.id)
        raise BackendUnavailableError("Could not submit booking request, please try again")
    db.refresh(booking)
    logger.info("Booking %s requested for venue %s on %s", booking.id, venue.id, booking.booking_date)

    broker.publish_row(TABLE, EventType.INSERT, booking)
    notifications.notify_booking_request(db, booking, venue_owner_id(venue), policy=policy, broker=broker)
    db.refresh(booking)
    return booking


def _page(query, page: int, limit: int) -> Tuple[List[Booking], int]:
    total = query.count()
    items = (
        query.order_by(Booking.booking_date.desc(), Booking.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def list_customer_bookings(db: Session, user_id, status: Optional[str] = None,
                           page: int = 1, limit: int = 20) -> Tuple[List[Booking], int]:
    query = db.query(Booking).filter(Booking.user_id == user_id)
    if status:
        query = query.filter(Booking.status == status)
    return _page(query, page, limit)


def list_owner_bookings(db: Session, owner_id, status: Optional[str] = None,
                        page: int = 1, limit: int = 20) -> Tuple[List[Booking], int]:
    venue_ids = owned_venue_ids(db, owner_id)
    if not venue_ids:
        return [], 0
    query = db.query(Booking).filter(Booking.venue_id.in_(venue_ids))
    if status:
        query = query.filter(Booking.status == status)
    return _page(query, page, limit)


def get_booking_for_user(db: Session, booking_id, user_id) -> Booking:
    """The booking, visible to its customer and to the venue owner."""
    with backend_errors(db, "load booking"):
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        venue = booking.venue if booking else None
    if not booking:
        raise NotFoundError("Booking not found")
    if str(booking.user_id) == str(user_id):
        return booking
    if venue and is_venue_owner(venue, user_id):
        return booking
    raise ForbiddenError("You do not have access to this booking")
