from typing import List, Literal, Optional
from pydantic import BaseModel, UUID4
from datetime import datetime


class MessageCreate(BaseModel):
    content: str
    venue_id: Optional[UUID4] = None
    venue_name: Optional[str] = None
    booking_id: Optional[UUID4] = None


class ConversationStart(BaseModel):
    venue_id: Optional[UUID4] = None
    venue_name: Optional[str] = None
    booking_id: Optional[UUID4] = None


class Message(BaseModel):
    id: UUID4
    sender_id: UUID4
    receiver_id: UUID4
    content: str
    read: bool
    created_at: Optional[datetime] = None
    sender_name: Optional[str] = None
    receiver_name: Optional[str] = None
    venue_id: Optional[UUID4] = None
    venue_name: Optional[str] = None
    booking_id: Optional[UUID4] = None

    class Config:
        from_attributes = True


class ChatContact(BaseModel):
    id: UUID4
    name: str
    image: Optional[str] = None
    role: Literal["venue-owner", "customer"]
    status: Optional[str] = None


class ConversationContext(BaseModel):
    venue_id: Optional[UUID4] = None
    venue_name: Optional[str] = None
    booking_id: Optional[UUID4] = None

    @property
    def is_empty(self) -> bool:
        return not (self.venue_id or self.venue_name or self.booking_id)


class Conversation(BaseModel):
    contact: ChatContact
    messages: List[Message]
    context: ConversationContext


class ConversationSummary(BaseModel):
    contact: ChatContact
    last_message: Message
    unread_count: int
