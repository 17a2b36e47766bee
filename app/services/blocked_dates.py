"""Owner-managed unavailability: whole days or time windows on a venue's calendar."""
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import BackendUnavailableError, ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from app.db.session import backend_errors
from app.models.booking import BlockedDate, Booking, BookingStatus
from app.services.realtime import EventType, RealtimeBroker, broker as default_broker, row_to_dict
from app.services.venues import is_venue_owner, load_venue

logger = logging.getLogger(__name__)

TABLE = "blocked_dates"


def list_blocked_dates(db: Session, venue_id, from_date: Optional[date] = None) -> List[BlockedDate]:
    query = db.query(BlockedDate).filter(BlockedDate.venue_id == venue_id)
    if from_date:
        query = query.filter(BlockedDate.date >= from_date)
    with backend_errors(db, "load blocked dates"):
        return query.order_by(BlockedDate.date, BlockedDate.start_time).all()


def _blocks_on(db: Session, venue_id, day: date) -> List[BlockedDate]:
    return (
        db.query(BlockedDate)
        .filter(BlockedDate.venue_id == venue_id, BlockedDate.date == day)
        .all()
    )


def is_date_blocked(db: Session, venue_id, day: date) -> bool:
    """True when any block, full-day or partial, falls on ``day``."""
    return (
        db.query(BlockedDate.id)
        .filter(BlockedDate.venue_id == venue_id, BlockedDate.date == day)
        .first()
        is not None
    )


def find_conflicting_block(db: Session, venue_id, day: date, start_time: Optional[str] = None,
                           end_time: Optional[str] = None) -> Optional[BlockedDate]:
    """
    The block a booking on ``day`` would collide with, if any.

    A booking without a time window takes the whole day and so collides with
    every block on that date.
    """
    for block in _blocks_on(db, venue_id, day):
        if block.is_full_day or not (block.start_time and block.end_time):
            return block
        if not (start_time and end_time):
            return block
        if block.start_time < end_time and start_time < block.end_time:
            return block
    return None


def _check_owner(db: Session, venue_id, acting_user_id):
    venue = load_venue(db, venue_id)
    if not is_venue_owner(venue, acting_user_id):
        raise ForbiddenError("Only the venue owner can manage blocked dates")
    return venue


def block_date(
    db: Session,
    venue_id,
    acting_user_id,
    day: date,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    is_full_day: bool = True,
    reason: Optional[str] = None,
    broker: RealtimeBroker = default_broker,
) -> BlockedDate:
    if is_full_day:
        start_time = end_time = None
    else:
        if not (start_time and end_time):
            raise InvalidInputError("A partial block needs a start and end time")
        if start_time >= end_time:
            raise InvalidInputError("End time must be after start time")

    venue = _check_owner(db, venue_id, acting_user_id)

    existing = _blocks_on(db, venue.id, day)
    if any(b.is_full_day for b in existing):
        raise ConflictError("This date is already blocked")
    if not is_full_day and any(b.start_time == start_time and b.end_time == end_time for b in existing):
        raise ConflictError("This time slot is already blocked")

    booked = (
        db.query(Booking.id)
        .filter(
            Booking.venue_id == venue.id,
            Booking.booking_date == day,
            Booking.status != BookingStatus.CANCELLED.value,
        )
        .count()
    )
    if booked:
        raise ConflictError("Cannot block a date that already has bookings")

    block = BlockedDate(
        venue_id=venue.id,
        date=day,
        start_time=start_time,
        end_time=end_time,
        is_full_day=is_full_day,
        reason=reason,
        created_by=acting_user_id,
    )
    # a full-day block replaces the partial ones on that date
    removed = [row_to_dict(b) for b in existing] if is_full_day else []
    try:
        if is_full_day:
            for partial in existing:
                db.delete(partial)
        db.add(block)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to block %s for venue %s", day, venue_id)
        raise BackendUnavailableError("Could not block this date, please try again")
    db.refresh(block)

    logger.info("Venue %s blocked on %s (%s)", venue.id, day,
                "full day" if is_full_day else f"{start_time}-{end_time}")
    for row in removed:
        broker.publish(TABLE, EventType.DELETE, row)
    broker.publish_row(TABLE, EventType.INSERT, block)
    return block


def unblock_date(db: Session, blocked_date_id, acting_user_id,
                 broker: RealtimeBroker = default_broker) -> None:
    block = db.query(BlockedDate).filter(BlockedDate.id == blocked_date_id).first()
    if not block:
        raise NotFoundError("Blocked date not found")
    _check_owner(db, block.venue_id, acting_user_id)

    row = row_to_dict(block)
    try:
        db.delete(block)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to unblock %s", blocked_date_id)
        raise BackendUnavailableError("Could not unblock this date, please try again")
    broker.publish(TABLE, EventType.DELETE, row)
