import uuid
from sqlalchemy import Column, String, Boolean, DateTime, func, ForeignKey, Text, Uuid
from app.db.session import Base
from app.utils.clock import utcnow


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False, index=True)
    receiver_id = Column(Uuid(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    sender_name = Column(String(255), nullable=True)
    receiver_name = Column(String(255), nullable=True)
    venue_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    venue_name = Column(String(255), nullable=True)
    booking_id = Column(Uuid(as_uuid=True), nullable=True)
    # Set only on opening messages: one per (pair, venue|booking) thread
    thread_key = Column(String(160), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
