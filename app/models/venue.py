import uuid
from sqlalchemy import Column, String, Boolean, DateTime, func, Text, DECIMAL, Integer, Float, JSON, Uuid
from app.db.session import Base


class Venue(Base):
    """
    Wide venue row as written by the owner-facing forms.

    The JSON columns hold whatever shape the writer produced (native list,
    JSON-encoded string, comma list, camelCase-joined string, object or
    object-as-string). Read them only through ``app.utils.fields``.
    """

    __tablename__ = "venues"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    zipcode = Column(String(20), nullable=True)
    type = Column(String(50), nullable=True, index=True)
    city_id = Column(String(100), nullable=True, index=True)
    city_name = Column(String(100), nullable=True)
    category_id = Column(JSON, nullable=True)
    category_name = Column(JSON, nullable=True)
    min_capacity = Column(Integer, nullable=True)
    max_capacity = Column(Integer, nullable=True)
    currency = Column(String(10), nullable=True)
    starting_price = Column(DECIMAL(12, 2), nullable=True)
    price_per_person = Column(DECIMAL(12, 2), nullable=True)
    hourly_rate = Column(DECIMAL(12, 2), nullable=True)
    image_url = Column(Text, nullable=True)
    gallery_images = Column(JSON, nullable=True)
    amenities = Column(JSON, nullable=True)
    accessibility_features = Column(JSON, nullable=True)
    accepted_payment_methods = Column(JSON, nullable=True)
    additional_services = Column(JSON, nullable=True)
    availability = Column(JSON, nullable=True)
    parking = Column(Boolean, default=False)
    wifi = Column(Boolean, default=False)
    owner_info = Column(JSON, nullable=True)
    opening_hours = Column(JSON, nullable=True)
    rules_and_regulations = Column(JSON, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    rating = Column(DECIMAL(2, 1), default=0)
    reviews_count = Column(Integer, default=0)
    featured = Column(Boolean, default=False, index=True)
    popular = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
