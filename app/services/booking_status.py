"""
Booking status workflow.

    pending   -> confirmed
    pending   -> cancelled
    confirmed -> cancelled

Nothing leaves ``cancelled``. Only the venue owner (``owner_info.user_id``)
may move a booking, and only one update runs at a time in this process; a
second caller gets ``BusyError`` instead of waiting.

The optional ``BookingBoard`` is the caller's in-memory booking list. Each
update runs inside a ``StatusTransaction`` that shows the new status on the
board straight away and then either replaces it with the committed row or
puts the old row back.
"""
from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (
    BackendUnavailableError,
    BusyError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from app.models.booking import Booking, BookingStatus
from app.services import notifications
from app.services.realtime import EventType, RealtimeBroker, broker as default_broker, row_to_dict
from app.services.venues import is_venue_owner

logger = logging.getLogger(__name__)

TABLE = "bookings"

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING.value: {BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value},
    BookingStatus.CONFIRMED.value: {BookingStatus.CANCELLED.value},
    BookingStatus.CANCELLED.value: set(),
}


class BookingBoard:
    """Bookings as the caller currently displays them, keyed by id."""

    def __init__(self, rows: Iterable[Dict[str, Any]] = ()):
        self._rows: Dict[str, Dict[str, Any]] = {}
        self.load(rows)

    def load(self, rows: Iterable[Dict[str, Any]]) -> None:
        self._rows = {}
        for row in rows:
            self.put(row)

    def put(self, row: Dict[str, Any]) -> None:
        row = dict(row)
        row["id"] = str(row["id"])
        self._rows[row["id"]] = row

    def get(self, booking_id) -> Optional[Dict[str, Any]]:
        return self._rows.get(str(booking_id))

    def is_updating(self, booking_id) -> bool:
        row = self.get(booking_id)
        return bool(row and row.get("updating"))

    @property
    def rows(self):
        return list(self._rows.values())


class TransactionState(str, enum.Enum):
    PENDING_OPTIMISTIC = "pending-optimistic"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


class StatusTransaction:
    """
    Optimistic status change on a ``BookingBoard``.

    Entering shows ``new_status`` (``updating=True``); ``commit(row)`` swaps in
    the server row; leaving with an exception restores the row captured on
    entry and lets the exception propagate.
    """

    def __init__(self, board: Optional[BookingBoard], before: Dict[str, Any], new_status: str):
        self.board = board
        self.before = dict(before)
        self.new_status = new_status
        self.state: Optional[TransactionState] = None

    def __enter__(self) -> "StatusTransaction":
        if self.board is not None:
            self.board.put({**self.before, "status": self.new_status, "updating": True})
        self.state = TransactionState.PENDING_OPTIMISTIC
        return self

    def commit(self, row: Dict[str, Any]) -> None:
        if self.board is not None:
            self.board.put({**row, "updating": False})
        self.state = TransactionState.COMMITTED

    def rollback(self) -> None:
        if self.board is not None:
            self.board.put({**self.before, "updating": False})
        self.state = TransactionState.ROLLED_BACK

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None or self.state is not TransactionState.COMMITTED:
            self.rollback()
        return False


def check_connection(db: Session) -> None:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database connectivity check failed")
        raise BackendUnavailableError("Cannot reach the database, please try again")


class BookingStatusWorkflow:
    def __init__(self, broker: RealtimeBroker = default_broker,
                 policy: Optional[notifications.RetryPolicy] = None):
        self.broker = broker
        self.policy = policy
        self._busy = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def update_status(self, db: Session, booking_id, new_status: str, acting_user_id,
                      board: Optional[BookingBoard] = None) -> Booking:
        if new_status not in ALLOWED_TRANSITIONS:
            raise InvalidInputError(f"Unknown booking status: {new_status}")
        if not self._busy.acquire(blocking=False):
            raise BusyError("Another status update is in progress, please wait")
        try:
            return self._update(db, booking_id, new_status, acting_user_id, board)
        finally:
            self._busy.release()

    def _update(self, db: Session, booking_id, new_status: str, acting_user_id,
                board: Optional[BookingBoard]) -> Booking:
        check_connection(db)

        try:
            booking = db.query(Booking).filter(Booking.id == booking_id).first()
            venue = booking.venue if booking else None
        except SQLAlchemyError:
            logger.exception("Failed to load booking %s", booking_id)
            raise BackendUnavailableError("Could not load booking, please try again")
        if not booking:
            raise NotFoundError("Booking not found")
        if not venue:
            raise NotFoundError("Venue not found")

        if not is_venue_owner(venue, acting_user_id):
            logger.warning("User %s tried to set booking %s to %s without owning venue %s",
                           acting_user_id, booking_id, new_status, venue.id)
            raise ForbiddenError("Only the venue owner can update this booking")

        if booking.status == new_status:
            return booking

        if new_status not in ALLOWED_TRANSITIONS.get(booking.status, set()):
            raise ConflictError(f"Cannot change a {booking.status} booking to {new_status}")

        before = row_to_dict(booking)
        with StatusTransaction(board, before, new_status) as tx:
            booking.status = new_status
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Failed to set booking %s to %s", booking_id, new_status)
                raise BackendUnavailableError("Could not update booking status, please try again")
            db.refresh(booking)
            tx.commit(row_to_dict(booking))

        logger.info("Booking %s: %s -> %s by %s", booking.id, before["status"], new_status, acting_user_id)
        self.broker.publish_row(TABLE, EventType.UPDATE, booking,
                                old={"id": before["id"], "status": before["status"]})

        result = notifications.notify_booking_status(db, booking, new_status, policy=self.policy, broker=self.broker)
        if result is not None and not result.delivered:
            logger.warning("Booking %s is %s but the customer was not notified", booking.id, new_status)
        return booking


booking_status_workflow = BookingStatusWorkflow()
