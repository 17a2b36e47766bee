"""
Messaging core: two-party conversations between a customer and a venue owner.

Reads mark incoming messages read in one batched update. Sends commit the
message, publish it on the ``messages`` push channel and then notify the
recipient on a best-effort basis. A failed notification never undoes a sent
message.
"""
from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import BackendUnavailableError, ConversationLoadError, InvalidInputError, NotFoundError
from app.db.session import backend_errors, session_scope
from app.models.message import Message
from app.models.user import UserProfile, UserRole
from app.schemas.message import (
    ChatContact,
    Conversation,
    ConversationContext,
    ConversationSummary,
    Message as MessageSchema,
)
from app.services import notifications
from app.services.realtime import ChangeEvent, EventType, RealtimeBroker, Subscription, broker as default_broker, row_to_dict

logger = logging.getLogger(__name__)

TABLE = "messages"

OPENING_MESSAGE = "Hi, I'm interested in {venue_name}."


def _pair_clause(a, b):
    return or_(
        and_(Message.sender_id == a, Message.receiver_id == b),
        and_(Message.sender_id == b, Message.receiver_id == a),
    )


def _display_name(profile: UserProfile) -> str:
    return profile.full_name or profile.email


def to_chat_contact(profile: UserProfile) -> ChatContact:
    role = profile.user_role if profile.user_role == UserRole.VENUE_OWNER.value else UserRole.CUSTOMER.value
    return ChatContact(
        id=profile.id,
        name=_display_name(profile),
        image=profile.profile_image,
        role=role,
    )


def _get_profile(db: Session, user_id) -> Optional[UserProfile]:
    return db.query(UserProfile).filter(UserProfile.id == user_id).first()


def thread_key(a, b, context: ConversationContext) -> Optional[str]:
    """Key of the auto-seeded opening message for a pair and a venue/booking."""
    anchor = context.venue_id or context.booking_id
    if anchor is None:
        return None
    first, second = sorted((str(a), str(b)))
    return f"{first}:{second}:{anchor}"


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


def load_conversation(db: Session, self_id, contact_id,
                      broker: RealtimeBroker = default_broker) -> Conversation:
    try:
        contact = _get_profile(db, contact_id)
        if not contact:
            raise NotFoundError("Contact not found")

        messages = (
            db.query(Message)
            .filter(_pair_clause(self_id, contact_id))
            .order_by(Message.created_at.asc())
            .all()
        )

        context = ConversationContext()
        for message in messages:
            if message.venue_id or message.venue_name:
                context = ConversationContext(
                    venue_id=message.venue_id,
                    venue_name=message.venue_name,
                    booking_id=message.booking_id,
                )
                break

        unread = [m for m in messages if str(m.receiver_id) == str(self_id) and not m.read]
        if unread:
            (
                db.query(Message)
                .filter(Message.id.in_([m.id for m in unread]))
                .update({Message.read: True}, synchronize_session=False)
            )
            db.commit()
            for message in unread:
                db.refresh(message)
                broker.publish_row(TABLE, EventType.UPDATE, message, old={"id": str(message.id), "read": False})
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to load conversation between %s and %s", self_id, contact_id)
        raise ConversationLoadError("Could not load this conversation")

    return Conversation(
        contact=to_chat_contact(contact),
        messages=[MessageSchema.model_validate(m) for m in messages],
        context=context,
    )


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------


def _notify_recipient(db: Session, sender: UserProfile, message: Message,
                      policy: Optional[notifications.RetryPolicy], broker: RealtimeBroker) -> None:
    about = f' about "{message.venue_name}"' if message.venue_name else ""
    result = notifications.deliver(
        db, message.receiver_id,
        title="New Message",
        message=f"{_display_name(sender)} sent you a message{about}",
        type="message",
        link="/messages",
        data={
            "sender_id": str(sender.id),
            "venue_id": str(message.venue_id) if message.venue_id else None,
        },
        policy=policy,
        broker=broker,
    )
    if not result.delivered:
        logger.warning("Message %s sent but recipient %s was not notified", message.id, message.receiver_id)


def _insert_message(db: Session, sender: UserProfile, receiver: UserProfile, content: str,
                    context: Optional[ConversationContext], key: Optional[str] = None) -> Message:
    context = context or ConversationContext()
    message = Message(
        sender_id=sender.id,
        receiver_id=receiver.id,
        content=content,
        read=False,
        sender_name=_display_name(sender),
        receiver_name=_display_name(receiver),
        venue_id=context.venue_id,
        venue_name=context.venue_name,
        booking_id=context.booking_id,
        thread_key=key,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def _load_pair(db: Session, sender_id, contact_id):
    sender = _get_profile(db, sender_id)
    if not sender:
        raise NotFoundError("Sender not found")
    contact = _get_profile(db, contact_id)
    if not contact:
        raise NotFoundError("Contact not found")
    return sender, contact


def send_message(db: Session, sender_id, contact_id, content: str,
                 context: Optional[ConversationContext] = None,
                 policy: Optional[notifications.RetryPolicy] = None,
                 broker: RealtimeBroker = default_broker) -> Message:
    text = (content or "").strip()
    if not text:
        raise InvalidInputError("Message cannot be empty")

    sender, contact = _load_pair(db, sender_id, contact_id)
    try:
        message = _insert_message(db, sender, contact, text, context)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to send message from %s to %s", sender_id, contact_id)
        raise BackendUnavailableError("Failed to send message")

    broker.publish_row(TABLE, EventType.INSERT, message)
    _notify_recipient(db, sender, message, policy, broker)
    return message


def ensure_opening_message(db: Session, sender_id, contact_id, context: Optional[ConversationContext],
                           policy: Optional[notifications.RetryPolicy] = None,
                           broker: RealtimeBroker = default_broker) -> Optional[Message]:
    """
    Send the opening message for a venue/booking thread once.

    Returns the message that opens the thread (new or already present), or
    ``None`` when there is no context to open a thread for.
    """
    if context is None or context.is_empty:
        return None
    key = thread_key(sender_id, contact_id, context)
    if key is None:
        return None

    query = db.query(Message).filter(_pair_clause(sender_id, contact_id))
    if context.venue_id:
        query = query.filter(Message.venue_id == context.venue_id)
    else:
        query = query.filter(Message.booking_id == context.booking_id)
    existing = query.order_by(Message.created_at.asc()).first()
    if existing:
        return existing

    sender, contact = _load_pair(db, sender_id, contact_id)
    content = OPENING_MESSAGE.format(venue_name=context.venue_name or "your venue")
    try:
        message = _insert_message(db, sender, contact, content, context, key=key)
    except IntegrityError:
        # the other side seeded the same thread first
        db.rollback()
        logger.info("Opening message for thread %s already exists", key)
        return db.query(Message).filter(Message.thread_key == key).first()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to send opening message from %s to %s", sender_id, contact_id)
        raise BackendUnavailableError("Failed to start conversation")

    broker.publish_row(TABLE, EventType.INSERT, message)
    _notify_recipient(db, sender, message, policy, broker)
    return message


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


def subscribe_to_conversation(
    broker: RealtimeBroker,
    session_factory: Callable[[], ContextManager[Session]],
    self_id,
    contact_id,
    on_message: Callable[[Dict[str, Any]], None],
) -> Subscription:
    """New messages between the pair; incoming unread ones are marked read before ``on_message``."""
    pair = {str(self_id), str(contact_id)}

    def _between_pair(row: Dict[str, Any]) -> bool:
        return {str(row.get("sender_id")), str(row.get("receiver_id"))} == pair

    def _on_insert(event: ChangeEvent) -> None:
        row = dict(event.row)
        if row.get("receiver_id") == str(self_id) and not row.get("read"):
            try:
                with session_factory() as db:
                    message = db.query(Message).filter(Message.id == uuid.UUID(row["id"])).first()
                    if message and not message.read:
                        message.read = True
                        db.commit()
                        db.refresh(message)
                        row = row_to_dict(message)
                        broker.publish_row(TABLE, EventType.UPDATE, message, old={"id": row["id"], "read": False})
            except SQLAlchemyError:
                logger.exception("Failed to mark message %s read", row.get("id"))
        on_message(row)

    return broker.subscribe(TABLE, _on_insert, row_filter=_between_pair, events=[EventType.INSERT])


# ---------------------------------------------------------------------------
# In-memory conversation
# ---------------------------------------------------------------------------


def _timestamp(value) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class ConversationView:
    """Messages of one conversation keyed by id, ordered by ``created_at``."""

    def __init__(self):
        self._messages: Dict[str, Dict[str, Any]] = {}

    @staticmethod
    def _as_row(message) -> Dict[str, Any]:
        # push rows, ORM rows and schemas all end up with the same keys
        if not isinstance(message, MessageSchema):
            message = MessageSchema.model_validate(message)
        return message.model_dump(mode="json")

    def load(self, messages) -> None:
        self._messages = {}
        for message in messages:
            self.apply(message)

    def apply(self, message) -> bool:
        """Insert or replace by id; returns False for an exact duplicate."""
        row = self._as_row(message)
        if self._messages.get(row["id"]) == row:
            return False
        self._messages[row["id"]] = row
        return True

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return sorted(self._messages.values(), key=lambda r: (_timestamp(r.get("created_at")), r["id"]))

    def __len__(self) -> int:
        return len(self._messages)


class SessionState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class ConversationSession:
    """
    One open conversation: ``IDLE -> LOADING -> READY | ERROR``.

    ``open`` subscribes before it loads so a message pushed during the load
    is not lost; the view absorbs the copy that shows up in both.
    """

    def __init__(
        self,
        self_id,
        contact_id,
        broker: RealtimeBroker = default_broker,
        session_factory: Callable[[], ContextManager[Session]] = session_scope,
        on_update: Optional[Callable[["ConversationSession"], None]] = None,
    ):
        self.self_id = self_id
        self.contact_id = contact_id
        self.broker = broker
        self.session_factory = session_factory
        self.on_update = on_update
        self.state = SessionState.IDLE
        self.view = ConversationView()
        self.contact: Optional[ChatContact] = None
        self.context = ConversationContext()
        self.error: Optional[Exception] = None
        self._subscription: Optional[Subscription] = None

    def open(self) -> SessionState:
        self.state = SessionState.LOADING
        self.error = None
        self._subscription = subscribe_to_conversation(
            self.broker, self.session_factory, self.self_id, self.contact_id, self._on_message
        )
        try:
            with self.session_factory() as db:
                conversation = load_conversation(db, self.self_id, self.contact_id, broker=self.broker)
        except (NotFoundError, ConversationLoadError) as exc:
            self.error = exc
            self.state = SessionState.ERROR
            self._unsubscribe()
            return self.state

        self.contact = conversation.contact
        self.context = conversation.context
        for message in conversation.messages:
            self.view.apply(message)
        self.state = SessionState.READY
        self._changed()
        return self.state

    def _on_message(self, row: Dict[str, Any]) -> None:
        if self.state not in (SessionState.LOADING, SessionState.READY):
            return
        if self.view.apply(row):
            self._changed()

    def _changed(self) -> None:
        if self.on_update and self.state is SessionState.READY:
            self.on_update(self)

    def send(self, content: str) -> MessageSchema:
        if self.state is not SessionState.READY:
            raise InvalidInputError("Conversation is not open")
        context = None if self.context.is_empty else self.context
        with self.session_factory() as db:
            message = MessageSchema.model_validate(
                send_message(db, self.self_id, self.contact_id, content, context, broker=self.broker)
            )
        self.view.apply(message)
        return message

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return self.view.messages

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def close(self) -> None:
        self._unsubscribe()
        self.state = SessionState.IDLE


# ---------------------------------------------------------------------------
# Conversation list
# ---------------------------------------------------------------------------


def list_conversations(db: Session, user_id) -> List[ConversationSummary]:
    """One entry per counterpart with the latest message, newest first."""
    with backend_errors(db, "load conversations"):
        messages = (
            db.query(Message)
            .filter(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(Message.created_at.desc())
            .all()
        )
    latest: Dict[str, Message] = {}
    unread: Dict[str, int] = {}
    for message in messages:
        other = message.receiver_id if str(message.sender_id) == str(user_id) else message.sender_id
        key = str(other)
        latest.setdefault(key, message)
        if str(message.receiver_id) == str(user_id) and not message.read:
            unread[key] = unread.get(key, 0) + 1

    if not latest:
        return []
    ids = [m.sender_id for m in latest.values()] + [m.receiver_id for m in latest.values()]
    with backend_errors(db, "load conversations"):
        profiles = {str(p.id): p for p in db.query(UserProfile).filter(UserProfile.id.in_(ids))}
    summaries = []
    for key, message in latest.items():
        profile = profiles.get(key)
        if not profile:
            continue
        summaries.append(ConversationSummary(
            contact=to_chat_contact(profile),
            last_message=MessageSchema.model_validate(message),
            unread_count=unread.get(key, 0),
        ))
    return summaries


def count_unread_messages(db: Session, user_id) -> int:
    with backend_errors(db, "count unread messages"):
        return (
            db.query(Message)
            .filter(Message.receiver_id == user_id, Message.read.is_(False))
            .count()
        )
