import uuid
import enum
from sqlalchemy import Column, String, Boolean, DateTime, func, Text, Uuid
from app.db.session import Base


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    VENUE_OWNER = "venue-owner"


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    phone = Column(String(30), nullable=True)
    profile_image = Column(Text, nullable=True)
    user_role = Column(String(20), nullable=False, default=UserRole.CUSTOMER.value)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()
