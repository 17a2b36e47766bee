import uuid
from datetime import timedelta

import pytest

from app.core.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from app.models.booking import BlockedDate
from app.services.blocked_dates import (
    block_date,
    find_conflicting_block,
    is_date_blocked,
    list_blocked_dates,
    unblock_date,
)
from app.services.realtime import EventType


def test_block_free_day(db, venue, owner, booking_day, broker):
    events = []
    broker.subscribe("blocked_dates", events.append)

    block = block_date(db, venue.id, owner.id, booking_day, reason="Maintenance", broker=broker)

    assert block.is_full_day
    assert block.start_time is None
    assert is_date_blocked(db, venue.id, booking_day)
    assert not is_date_blocked(db, venue.id, booking_day + timedelta(days=1))
    assert [e.type for e in events] == [EventType.INSERT]


def test_day_with_confirmed_booking_cannot_be_blocked(db, venue, owner, customer, booking_day, make_booking):
    make_booking(venue, customer, booking_day, status="confirmed")

    with pytest.raises(ConflictError):
        block_date(db, venue.id, owner.id, booking_day)
    assert not is_date_blocked(db, venue.id, booking_day)


def test_cancelled_bookings_do_not_hold_the_day(db, venue, owner, customer, booking_day, make_booking):
    make_booking(venue, customer, booking_day, status="cancelled")
    assert block_date(db, venue.id, owner.id, booking_day)


def test_partial_blocks_and_full_day_replacement(db, venue, owner, booking_day, broker):
    block_date(db, venue.id, owner.id, booking_day, "09:00", "12:00", is_full_day=False, broker=broker)
    block_date(db, venue.id, owner.id, booking_day, "14:00", "16:00", is_full_day=False, broker=broker)
    with pytest.raises(ConflictError):
        block_date(db, venue.id, owner.id, booking_day, "09:00", "12:00", is_full_day=False, broker=broker)

    events = []
    broker.subscribe("blocked_dates", events.append)
    block_date(db, venue.id, owner.id, booking_day, broker=broker)

    blocks = list_blocked_dates(db, venue.id)
    assert len(blocks) == 1 and blocks[0].is_full_day
    assert [e.type for e in events] == [EventType.DELETE, EventType.DELETE, EventType.INSERT]

    with pytest.raises(ConflictError):
        block_date(db, venue.id, owner.id, booking_day, "18:00", "20:00", is_full_day=False, broker=broker)


@pytest.mark.parametrize("start, end", [(None, "12:00"), ("12:00", None), ("12:00", "12:00"), ("15:00", "09:00")])
def test_partial_block_needs_a_valid_window(db, venue, owner, booking_day, start, end):
    with pytest.raises(InvalidInputError):
        block_date(db, venue.id, owner.id, booking_day, start, end, is_full_day=False)


def test_only_owner_blocks(db, venue, customer, booking_day):
    with pytest.raises(ForbiddenError):
        block_date(db, venue.id, customer.id, booking_day)
    assert db.query(BlockedDate).count() == 0


def test_unknown_venue(db, owner, booking_day):
    with pytest.raises(NotFoundError):
        block_date(db, uuid.uuid4(), owner.id, booking_day)


def test_unblock(db, venue, owner, customer, booking_day, broker):
    block = block_date(db, venue.id, owner.id, booking_day, broker=broker)

    with pytest.raises(ForbiddenError):
        unblock_date(db, block.id, customer.id, broker=broker)

    events = []
    broker.subscribe("blocked_dates", events.append)
    unblock_date(db, block.id, owner.id, broker=broker)

    assert not is_date_blocked(db, venue.id, booking_day)
    assert events[0].type is EventType.DELETE
    with pytest.raises(NotFoundError):
        unblock_date(db, block.id, owner.id, broker=broker)


def test_list_from_date(db, venue, owner, booking_day):
    block_date(db, venue.id, owner.id, booking_day)
    block_date(db, venue.id, owner.id, booking_day + timedelta(days=7))

    assert len(list_blocked_dates(db, venue.id)) == 2
    assert [b.date for b in list_blocked_dates(db, venue.id, booking_day + timedelta(days=1))] == [
        booking_day + timedelta(days=7)
    ]


def test_conflicting_block_lookup(db, venue, owner, booking_day):
    block_date(db, venue.id, owner.id, booking_day, "10:00", "12:00", is_full_day=False)

    assert find_conflicting_block(db, venue.id, booking_day, "11:00", "13:00") is not None
    assert find_conflicting_block(db, venue.id, booking_day, "12:00", "14:00") is None
    # no window means the whole day
    assert find_conflicting_block(db, venue.id, booking_day) is not None
    assert find_conflicting_block(db, venue.id, booking_day + timedelta(days=1)) is None
