import uuid

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import (
    BackendUnavailableError,
    BusyError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from app.services.booking_status import (
    BookingBoard,
    BookingStatusWorkflow,
    StatusTransaction,
    TransactionState,
)
from app.services.notifications import list_notifications
from app.services.realtime import EventType, row_to_dict


def _down(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("connection refused"))


@pytest.fixture
def workflow(broker, no_wait):
    return BookingStatusWorkflow(broker=broker, policy=no_wait)


@pytest.fixture
def booking(venue, customer, booking_day, make_booking):
    return make_booking(venue, customer, booking_day)


def test_owner_confirms_pending_booking(db, workflow, booking, owner, customer, broker):
    events = []
    broker.subscribe("bookings", events.append)
    board = BookingBoard([row_to_dict(booking)])

    updated = workflow.update_status(db, booking.id, "confirmed", owner.id, board=board)

    assert updated.status == "confirmed"
    assert board.get(booking.id)["status"] == "confirmed"
    assert not board.is_updating(booking.id)
    assert [e.type for e in events] == [EventType.UPDATE]
    assert events[0].old == {"id": str(booking.id), "status": "pending"}
    assert list_notifications(db, customer.id)[0].title == "Booking Confirmed"


def test_same_status_is_a_no_op(db, workflow, booking, owner, customer, broker):
    workflow.update_status(db, booking.id, "confirmed", owner.id)
    events = []
    broker.subscribe("bookings", events.append)

    again = workflow.update_status(db, booking.id, "confirmed", owner.id)

    assert again.status == "confirmed"
    assert events == []
    assert len(list_notifications(db, customer.id)) == 1


def test_owner_cancels_confirmed_booking(db, workflow, booking, owner, customer):
    workflow.update_status(db, booking.id, "confirmed", owner.id)
    workflow.update_status(db, booking.id, "cancelled", owner.id)

    note = list_notifications(db, customer.id)[0]
    assert note.title == "Booking Cancelled"
    assert note.message.endswith("has been cancelled by the venue owner.")


def test_customer_cannot_change_status(db, workflow, booking, customer):
    board = BookingBoard([row_to_dict(booking)])

    with pytest.raises(ForbiddenError):
        workflow.update_status(db, booking.id, "confirmed", customer.id, board=board)

    db.refresh(booking)
    assert booking.status == "pending"
    assert board.get(booking.id)["status"] == "pending"


def test_venue_without_owner_id_refuses_everyone(db, workflow, make_venue, make_booking, customer, owner, booking_day):
    orphan = make_venue(owner_info={"name": "Front desk", "contact": "desk@example.com"})
    booking = make_booking(orphan, customer, booking_day)
    with pytest.raises(ForbiddenError):
        workflow.update_status(db, booking.id, "confirmed", owner.id)


def test_cancelled_is_final(db, workflow, venue, customer, owner, booking_day, make_booking):
    booking = make_booking(venue, customer, booking_day, status="cancelled")
    with pytest.raises(ConflictError):
        workflow.update_status(db, booking.id, "confirmed", owner.id)
    with pytest.raises(ConflictError):
        workflow.update_status(db, booking.id, "pending", owner.id)


def test_unknown_status(db, workflow, booking, owner):
    with pytest.raises(InvalidInputError):
        workflow.update_status(db, booking.id, "archived", owner.id)


def test_missing_booking(db, workflow, owner):
    with pytest.raises(NotFoundError):
        workflow.update_status(db, uuid.uuid4(), "confirmed", owner.id)


def test_second_update_while_busy_is_refused(db, workflow, booking, owner):
    workflow._busy.acquire()
    try:
        assert workflow.busy
        with pytest.raises(BusyError) as exc_info:
            workflow.update_status(db, booking.id, "confirmed", owner.id)
        assert exc_info.value.message == "Another status update is in progress, please wait"
    finally:
        workflow._busy.release()

    db.refresh(booking)
    assert booking.status == "pending"
    assert not workflow.busy


def test_failed_commit_restores_previous_row(db, workflow, booking, owner, customer, monkeypatch):
    board = BookingBoard([row_to_dict(booking)])
    monkeypatch.setattr(db, "commit", _down)

    with pytest.raises(BackendUnavailableError):
        workflow.update_status(db, booking.id, "confirmed", owner.id, board=board)

    monkeypatch.undo()
    assert board.get(booking.id)["status"] == "pending"
    assert not board.is_updating(booking.id)
    db.refresh(booking)
    assert booking.status == "pending"
    assert list_notifications(db, customer.id) == []
    assert not workflow.busy


def test_unreachable_database_is_reported_before_any_change(db, workflow, booking, owner, customer, monkeypatch):
    booking_id, owner_id = booking.id, owner.id
    board = BookingBoard([row_to_dict(booking)])
    monkeypatch.setattr(db, "execute", _down)

    with pytest.raises(BackendUnavailableError) as exc_info:
        workflow.update_status(db, booking_id, "confirmed", owner_id, board=board)

    monkeypatch.undo()
    assert exc_info.value.message == "Cannot reach the database, please try again"
    assert board.get(booking_id)["status"] == "pending"
    assert not board.is_updating(booking_id)
    db.refresh(booking)
    assert booking.status == "pending"
    assert list_notifications(db, customer.id) == []


def test_transaction_shows_new_status_until_it_settles():
    board = BookingBoard([{"id": "b1", "status": "pending"}])

    with StatusTransaction(board, board.get("b1"), "confirmed") as tx:
        assert board.get("b1")["status"] == "confirmed"
        assert board.is_updating("b1")
        assert tx.state is TransactionState.PENDING_OPTIMISTIC

    # left without commit
    assert tx.state is TransactionState.ROLLED_BACK
    assert board.get("b1") == {"id": "b1", "status": "pending", "updating": False}


def test_transaction_rolls_back_on_error():
    board = BookingBoard([{"id": "b1", "status": "pending"}])

    with pytest.raises(RuntimeError):
        with StatusTransaction(board, board.get("b1"), "cancelled"):
            raise RuntimeError("boom")

    assert board.get("b1")["status"] == "pending"
