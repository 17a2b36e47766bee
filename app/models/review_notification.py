import uuid
from sqlalchemy import Column, String, Boolean, DateTime, func, Integer, ForeignKey, Text, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.utils.clock import utcnow

class UserRating(Base):
    __tablename__ = "user_ratings"
    __table_args__ = (UniqueConstraint("user_id", "venue_id", name="uq_user_ratings_user_venue"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False)
    venue_id = Column(Uuid(as_uuid=True), ForeignKey("venues.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False) # 1-5
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("UserProfile")
    venue = relationship("Venue")

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Always the recipient, never the actor
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False) # booking, message, system
    read = Column(Boolean, nullable=False, default=False)
    link = Column(Text, nullable=True)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)

    user = relationship("UserProfile")
