"""
Notification center.

Rows in ``notifications`` are always addressed to the recipient. Writes here
commit first and then publish on the ``notifications`` push channel, so a
subscriber never sees a row the database does not have.

Delivery (``deliver`` / ``notify``) is best effort: a bounded number of
attempts with linear backoff, after which the caller gets an ``EXHAUSTED``
result instead of an exception. Booking and messaging flows must not fail
because a notification could not be written.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

import backoff
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotFoundError
from app.db.session import backend_errors
from app.models.booking import Booking
from app.models.review_notification import Notification
from app.services.realtime import ChangeEvent, EventType, RealtimeBroker, Subscription, broker as default_broker, row_to_dict

logger = logging.getLogger(__name__)

TABLE = "notifications"


# ---------------------------------------------------------------------------
# Delivery with bounded retry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 1

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.NOTIFY_MAX_ATTEMPTS,
            backoff_seconds=settings.NOTIFY_BACKOFF_SECONDS,
        )


def linear_wait(step: float):
    """backoff wait generator: step, 2*step, 3*step, ..."""
    # backoff primes the generator with send(None) before the first retry
    yield
    attempt = 1
    while True:
        yield step * attempt
        attempt += 1


class DeliveryStatus(str, enum.Enum):
    DELIVERED = "delivered"
    EXHAUSTED = "exhausted"


@dataclass
class DeliveryResult:
    status: DeliveryStatus
    attempts: int
    notification: Optional[Notification] = None
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED


def deliver(
    db: Session,
    user_id,
    title: str,
    message: str,
    type: str,
    link: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
    policy: Optional[RetryPolicy] = None,
    broker: RealtimeBroker = default_broker,
) -> DeliveryResult:
    policy = policy or RetryPolicy.from_settings()
    attempts = 0

    def _attempt() -> Notification:
        nonlocal attempts
        attempts += 1
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            link=link,
            data=data,
            read=False,
        )
        try:
            db.add(notification)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(notification)
        return notification

    def _log_retry(details):
        logger.warning(
            "Notification for user %s failed (attempt %d/%d), retrying in %.1fs",
            user_id, details["tries"], policy.max_attempts, details["wait"],
        )

    send = backoff.on_exception(
        linear_wait,
        SQLAlchemyError,
        max_tries=max(policy.max_attempts, 1),
        jitter=None,
        on_backoff=_log_retry,
        step=policy.backoff_seconds,
    )(_attempt)

    try:
        notification = send()
    except SQLAlchemyError as exc:
        logger.warning(
            "Notification delivery to user %s exhausted after %d attempts: %s",
            user_id, attempts, exc,
        )
        return DeliveryResult(status=DeliveryStatus.EXHAUSTED, attempts=attempts, error=str(exc))

    broker.publish_row(TABLE, EventType.INSERT, notification)
    return DeliveryResult(status=DeliveryStatus.DELIVERED, attempts=attempts, notification=notification)


def notify(db: Session, user_id, title: str, message: str, type: str, link: Optional[str] = None,
           data: Optional[Dict[str, Any]] = None, policy: Optional[RetryPolicy] = None,
           broker: RealtimeBroker = default_broker) -> Optional[Notification]:
    """Fire-and-forget; ``None`` means delivery is not guaranteed."""
    result = deliver(db, user_id, title, message, type, link=link, data=data, policy=policy, broker=broker)
    return result.notification


# ---------------------------------------------------------------------------
# Reads and read flags
# ---------------------------------------------------------------------------


def _user_query(db: Session, user_id, unread_only: bool = False):
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query


def list_notifications(db: Session, user_id, limit: int = 20, unread_only: bool = False,
                       offset: int = 0) -> List[Notification]:
    with backend_errors(db, "load notifications"):
        return (
            _user_query(db, user_id, unread_only)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )


def count_notifications(db: Session, user_id, unread_only: bool = False) -> int:
    with backend_errors(db, "count notifications"):
        return _user_query(db, user_id, unread_only).count()


def count_unread(db: Session, user_id) -> int:
    return count_notifications(db, user_id, unread_only=True)


def mark_read(db: Session, notification_id, user_id=None,
              broker: RealtimeBroker = default_broker) -> Notification:
    """Idempotent: marking an already-read row succeeds without a write."""
    query = db.query(Notification).filter(Notification.id == notification_id)
    if user_id is not None:
        query = query.filter(Notification.user_id == user_id)
    with backend_errors(db, "load notification"):
        notification = query.first()
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.read:
        return notification

    notification.read = True
    with backend_errors(db, "mark notification read"):
        db.commit()
        db.refresh(notification)
    broker.publish_row(TABLE, EventType.UPDATE, notification, old={"id": str(notification.id), "read": False})
    return notification


def mark_all_read(db: Session, user_id, broker: RealtimeBroker = default_broker) -> int:
    with backend_errors(db, "load notifications"):
        unread = _user_query(db, user_id, unread_only=True).all()
    if not unread:
        return 0
    for notification in unread:
        notification.read = True
    with backend_errors(db, "mark notifications read"):
        db.commit()
        for notification in unread:
            db.refresh(notification)
    for notification in unread:
        broker.publish_row(TABLE, EventType.UPDATE, notification, old={"id": str(notification.id), "read": False})
    logger.info("Marked %d notifications read for user %s", len(unread), user_id)
    return len(unread)


def subscribe_notifications(broker: RealtimeBroker, user_id, on_change: Callable[[ChangeEvent], None]) -> Subscription:
    return broker.subscribe(TABLE, on_change, row_filter={"user_id": user_id})


# ---------------------------------------------------------------------------
# In-memory feed
# ---------------------------------------------------------------------------


class NotificationFeed:
    """
    Client-side notification list, newest first, keyed by id.

    Fetch results and push events both go through this reducer, so the same
    row arriving twice is absorbed. ``unread_count`` starts from the server
    total passed to ``load`` and only moves on read-flag transitions; it does
    not depend on how much of the list is held in memory.
    """

    def __init__(self):
        self._items: Dict[str, Dict[str, Any]] = {}
        self._order: List[str] = []
        self.unread_count = 0

    @staticmethod
    def _as_row(item) -> Dict[str, Any]:
        if isinstance(item, dict):
            row = dict(item)
        elif hasattr(item, "model_dump"):
            row = item.model_dump(mode="json")
        else:
            row = row_to_dict(item)
        row["id"] = str(row["id"])
        return row

    def load(self, items: Iterable, unread_total: int) -> None:
        self._items = {}
        self._order = []
        for item in items:
            row = self._as_row(item)
            if row["id"] not in self._items:
                self._order.append(row["id"])
            self._items[row["id"]] = row
        self.unread_count = max(unread_total, 0)

    @property
    def items(self) -> List[Dict[str, Any]]:
        return [self._items[key] for key in self._order]

    def get(self, notification_id) -> Optional[Dict[str, Any]]:
        return self._items.get(str(notification_id))

    def apply(self, event: ChangeEvent) -> bool:
        """Fold one push event into the feed; returns False when it changed nothing."""
        row = self._as_row(event.row)
        key = row["id"]

        if event.type is EventType.INSERT:
            if key in self._items:
                return False
            self._items[key] = row
            self._order.insert(0, key)
            if not row.get("read"):
                self.unread_count += 1
            return True

        if event.type is EventType.UPDATE:
            previous = self._items.get(key)
            if previous is not None:
                was_read = bool(previous.get("read"))
            elif event.old is not None and "read" in event.old:
                was_read = bool(event.old["read"])
            else:
                was_read = bool(row.get("read"))
            now_read = bool(row.get("read"))
            if previous is not None:
                self._items[key] = row
            if was_read != now_read:
                self.unread_count += -1 if now_read else 1
                self.unread_count = max(self.unread_count, 0)
            return previous is not None or was_read != now_read

        if event.type is EventType.DELETE:
            previous = self._items.pop(key, None)
            if previous is None:
                return False
            self._order.remove(key)
            if not previous.get("read"):
                self.unread_count = max(self.unread_count - 1, 0)
            return True

        return False


# ---------------------------------------------------------------------------
# Booking notifications
# ---------------------------------------------------------------------------


def format_booking_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def notify_booking_request(db: Session, booking: Booking, owner_id,
                           policy: Optional[RetryPolicy] = None,
                           broker: RealtimeBroker = default_broker) -> List[DeliveryResult]:
    """Tell the venue owner about a new request and confirm receipt to the customer."""
    when = format_booking_date(booking.booking_date)
    if booking.start_time and booking.end_time:
        window = f"from {booking.start_time} to {booking.end_time}"
    else:
        window = "for the entire day"
    data = {"booking_id": str(booking.id), "venue_id": str(booking.venue_id)}

    results = []
    if owner_id:
        results.append(deliver(
            db, owner_id,
            title="New Booking Request",
            message=f'A new booking request for "{booking.venue_name}" on {when} {window} has been received.',
            type="booking",
            link="/customer-bookings",
            data=data,
            policy=policy,
            broker=broker,
        ))
    else:
        logger.warning("Venue %s has no owner user id; owner not notified of booking %s",
                       booking.venue_id, booking.id)

    results.append(deliver(
        db, booking.user_id,
        title="Booking Submitted",
        message=(f"Your booking request for {booking.venue_name} on {when} "
                 "has been submitted and is awaiting confirmation."),
        type="booking",
        link="/bookings",
        data=data,
        policy=policy,
        broker=broker,
    ))
    return results


STATUS_TITLES = {
    "confirmed": ("Booking Confirmed", "has been confirmed."),
    "cancelled": ("Booking Cancelled", "has been cancelled by the venue owner."),
}


def notify_booking_status(db: Session, booking: Booking, status: str,
                          policy: Optional[RetryPolicy] = None,
                          broker: RealtimeBroker = default_broker) -> Optional[DeliveryResult]:
    if status not in STATUS_TITLES:
        return None
    title, outcome = STATUS_TITLES[status]
    return deliver(
        db, booking.user_id,
        title=title,
        message=f"Your booking for {booking.venue_name} on {format_booking_date(booking.booking_date)} {outcome}",
        type="booking",
        link="/bookings",
        data={"booking_id": str(booking.id), "venue_id": str(booking.venue_id)},
        policy=policy,
        broker=broker,
    )
