import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import BackendUnavailableError, InvalidInputError, NotFoundError
from app.db.session import session_scope
from app.models.message import Message
from app.schemas.message import ConversationContext
from app.services.messaging import (
    ConversationSession,
    ConversationView,
    SessionState,
    count_unread_messages,
    ensure_opening_message,
    list_conversations,
    load_conversation,
    send_message,
    subscribe_to_conversation,
    thread_key,
)
from app.services.notifications import list_notifications


@pytest.fixture
def context(venue):
    return ConversationContext(venue_id=venue.id, venue_name=venue.name)


def _row(content, minutes, **extra):
    row = {
        "id": str(uuid.uuid4()),
        "sender_id": str(uuid.uuid4()),
        "receiver_id": str(uuid.uuid4()),
        "content": content,
        "read": False,
        "created_at": (datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)).isoformat(),
    }
    row.update(extra)
    return row


# ---------------------------------------------------------------------------
# Send and load
# ---------------------------------------------------------------------------


def test_sent_message_appears_once_for_the_recipient(db, customer, owner, context, broker, no_wait):
    send_message(db, customer.id, owner.id, "  Is the hall free in May?  ", context, policy=no_wait, broker=broker)

    conversation = load_conversation(db, owner.id, customer.id, broker=broker)

    assert [m.content for m in conversation.messages] == ["Is the hall free in May?"]
    assert conversation.contact.name == "Sara Ali"
    assert conversation.contact.role == "customer"
    assert conversation.context.venue_name == "Crystal Hall"


def test_loading_marks_incoming_messages_read(db, customer, owner, broker, no_wait):
    sent = send_message(db, customer.id, owner.id, "Hello", policy=no_wait, broker=broker)
    updates = []
    broker.subscribe("messages", updates.append)

    load_conversation(db, customer.id, owner.id, broker=broker)
    db.refresh(sent)
    assert sent.read is False
    assert updates == []

    load_conversation(db, owner.id, customer.id, broker=broker)
    db.refresh(sent)
    assert sent.read is True
    assert updates[0].old == {"id": str(sent.id), "read": False}
    assert count_unread_messages(db, owner.id) == 0


def test_send_notifies_recipient(db, customer, owner, context, broker, no_wait):
    send_message(db, customer.id, owner.id, "Hello", context, policy=no_wait, broker=broker)

    note = list_notifications(db, owner.id)[0]
    assert note.title == "New Message"
    assert note.message == 'Sara Ali sent you a message about "Crystal Hall"'
    assert note.link == "/messages"
    assert note.data["sender_id"] == str(customer.id)


@pytest.mark.parametrize("content", ["", "   ", None])
def test_empty_message_is_rejected_before_any_write(db, customer, owner, broker, content):
    with pytest.raises(InvalidInputError):
        send_message(db, customer.id, owner.id, content, broker=broker)
    assert db.query(Message).count() == 0


def test_unknown_contact(db, customer, broker):
    with pytest.raises(NotFoundError):
        load_conversation(db, customer.id, uuid.uuid4(), broker=broker)
    with pytest.raises(NotFoundError):
        send_message(db, customer.id, uuid.uuid4(), "Hello", broker=broker)


def test_context_comes_from_first_message_with_a_venue(db, customer, owner, context, broker, no_wait):
    send_message(db, customer.id, owner.id, "Hi", policy=no_wait, broker=broker)
    send_message(db, customer.id, owner.id, "About the hall", context, policy=no_wait, broker=broker)
    send_message(db, owner.id, customer.id, "Sure", policy=no_wait, broker=broker)

    conversation = load_conversation(db, customer.id, owner.id, broker=broker)
    assert conversation.context.venue_id == context.venue_id
    assert len(conversation.messages) == 3


# ---------------------------------------------------------------------------
# Opening message
# ---------------------------------------------------------------------------


def test_opening_message_is_sent_once_per_thread(db, customer, owner, context, broker, no_wait):
    first = ensure_opening_message(db, customer.id, owner.id, context, policy=no_wait, broker=broker)
    again = ensure_opening_message(db, customer.id, owner.id, context, policy=no_wait, broker=broker)
    from_owner = ensure_opening_message(db, owner.id, customer.id, context, policy=no_wait, broker=broker)

    assert first.content == "Hi, I'm interested in Crystal Hall."
    assert again.id == first.id == from_owner.id
    assert db.query(Message).count() == 1


def test_opening_message_race_returns_existing_thread(db, customer, owner, context, broker, no_wait):
    # seeded concurrently by the other side, not yet visible to the venue lookup
    key = thread_key(customer.id, owner.id, context)
    rival = Message(sender_id=owner.id, receiver_id=customer.id, content="Hello!", thread_key=key)
    db.add(rival)
    db.commit()

    result = ensure_opening_message(db, customer.id, owner.id, context, policy=no_wait, broker=broker)

    assert result.id == rival.id
    assert db.query(Message).count() == 1


def test_opening_message_needs_context(db, customer, owner, broker):
    assert ensure_opening_message(db, customer.id, owner.id, None, broker=broker) is None
    assert ensure_opening_message(db, customer.id, owner.id, ConversationContext(), broker=broker) is None


def test_thread_key_is_symmetric(context):
    a, b = uuid.uuid4(), uuid.uuid4()
    assert thread_key(a, b, context) == thread_key(b, a, context)
    assert thread_key(a, b, ConversationContext(venue_name="No id")) is None


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


def test_pushed_message_is_marked_read_before_delivery(db, customer, owner, broker, no_wait):
    received = []
    subscribe_to_conversation(broker, session_scope, owner.id, customer.id, received.append)

    sent = send_message(db, customer.id, owner.id, "Hello", policy=no_wait, broker=broker)

    assert len(received) == 1
    assert received[0]["read"] is True
    db.refresh(sent)
    assert sent.read is True


def test_push_ignores_other_conversations(db, customer, owner, make_user, broker, no_wait):
    stranger = make_user("Lina", "Saad")
    received = []
    subscribe_to_conversation(broker, session_scope, owner.id, customer.id, received.append)

    send_message(db, stranger.id, owner.id, "Hello", policy=no_wait, broker=broker)
    assert received == []


def test_own_messages_are_pushed_unchanged(db, customer, owner, broker, no_wait):
    received = []
    subscribe_to_conversation(broker, session_scope, customer.id, owner.id, received.append)

    send_message(db, customer.id, owner.id, "Hello", policy=no_wait, broker=broker)
    assert received[0]["read"] is False


# ---------------------------------------------------------------------------
# In-memory view and session
# ---------------------------------------------------------------------------


def test_view_orders_by_time_and_absorbs_duplicates():
    view = ConversationView()
    late, early = _row("late", 5), _row("early", 1)

    assert view.apply(late)
    assert view.apply(early)
    assert not view.apply(dict(late))

    assert [m["content"] for m in view.messages] == ["early", "late"]
    assert len(view) == 2


def test_view_replaces_changed_row():
    view = ConversationView()
    row = _row("hello", 1)
    view.apply(row)

    assert view.apply(dict(row, read=True))
    assert len(view) == 1
    assert view.messages[0]["read"] is True


def test_session_receives_each_message_once(db, customer, owner, broker, no_wait):
    updates = []
    session = ConversationSession(customer.id, owner.id, broker=broker, on_update=updates.append)

    assert session.open() is SessionState.READY
    mine = session.send("Is Friday free?")
    send_message(db, owner.id, customer.id, "Yes it is", policy=no_wait, broker=broker)

    assert [m["content"] for m in session.messages] == ["Is Friday free?", "Yes it is"]
    assert session.messages[0]["id"] == str(mine.id)
    assert session.messages[1]["read"] is True
    assert updates

    session.close()
    send_message(db, owner.id, customer.id, "Still there?", policy=no_wait, broker=broker)
    assert len(session.messages) == 2
    assert session.state is SessionState.IDLE


def test_session_loads_history_with_context(db, customer, owner, context, broker, no_wait):
    send_message(db, owner.id, customer.id, "Welcome", context, policy=no_wait, broker=broker)

    session = ConversationSession(customer.id, owner.id, broker=broker)
    session.open()

    assert session.contact.role == "venue-owner"
    assert session.context.venue_name == "Crystal Hall"
    assert len(session.messages) == 1
    session.send("Thanks")
    assert db.query(Message).filter(Message.content == "Thanks").one().venue_id == context.venue_id


def test_session_error_for_missing_contact(customer, broker):
    session = ConversationSession(customer.id, uuid.uuid4(), broker=broker)

    assert session.open() is SessionState.ERROR
    assert isinstance(session.error, NotFoundError)
    assert broker.subscriber_count("messages") == 0
    with pytest.raises(InvalidInputError):
        session.send("Hello")


# ---------------------------------------------------------------------------
# Conversation list
# ---------------------------------------------------------------------------


def test_list_conversations_one_entry_per_contact(db, customer, owner, make_user, broker, no_wait):
    other_owner = make_user("Faisal", "Nasser", role="venue-owner")
    send_message(db, customer.id, owner.id, "First", policy=no_wait, broker=broker)
    send_message(db, owner.id, customer.id, "Reply", policy=no_wait, broker=broker)
    send_message(db, other_owner.id, customer.id, "Offer", policy=no_wait, broker=broker)

    summaries = {s.contact.name: s for s in list_conversations(db, customer.id)}

    assert set(summaries) == {"Omar Hassan", "Faisal Nasser"}
    assert summaries["Omar Hassan"].last_message.content == "Reply"
    assert summaries["Omar Hassan"].unread_count == 1
    assert count_unread_messages(db, customer.id) == 2


def test_inbox_reads_report_lost_database(db, customer, monkeypatch):
    def offline(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    user_id = customer.id
    monkeypatch.setattr(db, "query", offline)

    with pytest.raises(BackendUnavailableError):
        list_conversations(db, user_id)
    with pytest.raises(BackendUnavailableError):
        count_unread_messages(db, user_id)
