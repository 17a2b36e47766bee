from uuid import UUID
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import UserProfile
from app.schemas.common import CountResponse
from app.schemas.message import (
    Conversation,
    ConversationContext,
    ConversationStart,
    ConversationSummary,
    Message as MessageSchema,
    MessageCreate,
)
from app.services import messaging

router = APIRouter(prefix="/messages", tags=["Messages"])


@router.get("/", response_model=List[ConversationSummary])
def list_conversations(
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """One entry per contact with the latest message, newest first."""
    return messaging.list_conversations(db, current_user.id)


@router.get("/unread-count", response_model=CountResponse)
def unread_messages(
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    return CountResponse(count=messaging.count_unread_messages(db, current_user.id))


@router.get("/{contact_id}", response_model=Conversation)
def open_conversation(
    contact_id: UUID,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """History with a contact, oldest first. Messages from the contact are marked read."""
    return messaging.load_conversation(db, current_user.id, contact_id)


@router.post("/{contact_id}", response_model=MessageSchema, status_code=status.HTTP_201_CREATED)
def send_message(
    contact_id: UUID,
    data: MessageCreate,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    context = ConversationContext(
        venue_id=data.venue_id, venue_name=data.venue_name, booking_id=data.booking_id
    )
    return messaging.send_message(
        db, current_user.id, contact_id, data.content,
        context=None if context.is_empty else context,
    )


@router.post("/{contact_id}/start", response_model=Optional[MessageSchema])
def start_conversation(
    contact_id: UUID,
    data: ConversationStart,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """
    Open a venue or booking thread with a contact.

    Sends "Hi, I'm interested in <venue>." the first time only; later calls
    return the message that already opened the thread.
    """
    context = ConversationContext(
        venue_id=data.venue_id, venue_name=data.venue_name, booking_id=data.booking_id
    )
    return messaging.ensure_opening_message(db, current_user.id, contact_id, context)
