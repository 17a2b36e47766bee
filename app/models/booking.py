import uuid
import enum
from sqlalchemy import Column, String, Boolean, DateTime, func, DECIMAL, Integer, ForeignKey, Text, Date, Uuid
from sqlalchemy.orm import relationship
from app.db.session import Base


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False, index=True)
    venue_id = Column(Uuid(as_uuid=True), ForeignKey("venues.id"), nullable=False, index=True)
    venue_name = Column(String(255), nullable=False)
    booking_date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=True)  # HH:MM
    end_time = Column(String(5), nullable=True)
    guests = Column(Integer, nullable=False, default=1)
    status = Column(String(20), default=BookingStatus.PENDING.value, index=True)
    total_price = Column(DECIMAL(12, 2), nullable=False, default=0)
    special_requests = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    # Relationships
    user = relationship("UserProfile")
    venue = relationship("Venue")


class BlockedDate(Base):
    __tablename__ = "blocked_dates"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    venue_id = Column(Uuid(as_uuid=True), ForeignKey("venues.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=True)  # NULL for full-day blocks
    end_time = Column(String(5), nullable=True)
    is_full_day = Column(Boolean, nullable=False, default=True)
    reason = Column(Text, nullable=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
