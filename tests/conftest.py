import os

# must be set before app.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFY_BACKOFF_SECONDS"] = "0"
os.environ["FUNCTIONS_BASE_URL"] = "http://functions.test"

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token, get_password_hash
from app.db.base import Base
from app.db.session import SessionLocal
from app.main import app
from app.models.booking import Booking
from app.models.user import UserProfile, UserRole
from app.models.venue import Venue
from app.services.notifications import RetryPolicy
from app.services.realtime import RealtimeBroker

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
SessionLocal.configure(bind=test_engine)


@pytest.fixture(autouse=True)
def tables():
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    # no context manager: the lifespan would try to bootstrap PostgreSQL
    return TestClient(app)


@pytest.fixture
def broker():
    return RealtimeBroker()


@pytest.fixture
def no_wait():
    return RetryPolicy(max_attempts=3, backoff_seconds=0)


@pytest.fixture
def make_user(db):
    def _make(first_name="Sara", last_name="Ali", role=UserRole.CUSTOMER.value, email=None):
        user = UserProfile(
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            password_hash=get_password_hash("secret123"),
            first_name=first_name,
            last_name=last_name,
            user_role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def customer(make_user):
    return make_user("Sara", "Ali")


@pytest.fixture
def owner(make_user):
    return make_user("Omar", "Hassan", role=UserRole.VENUE_OWNER.value)


@pytest.fixture
def make_venue(db):
    def _make(owner=None, **fields):
        values = dict(
            name="Crystal Hall",
            description="Grand ballroom in the city centre",
            address="King Fahd Road",
            city_id="riyadh",
            city_name="Riyadh",
            category_id='["weddings", "conferences"]',
            category_name="WeddingsConferences",
            min_capacity=50,
            max_capacity=200,
            currency="SAR",
            starting_price=Decimal("20000"),
            amenities="Parking, Free WiFi, Catering Service",
            gallery_images=["https://img.example/1.jpg", "https://img.example/2.jpg"],
            type="hall",
            rating=Decimal("4.0"),
            reviews_count=9,
        )
        if owner is not None:
            values["owner_info"] = {"name": owner.full_name, "contact": owner.email, "user_id": str(owner.id)}
        values.update(fields)
        venue = Venue(**values)
        db.add(venue)
        db.commit()
        db.refresh(venue)
        return venue
    return _make


@pytest.fixture
def venue(make_venue, owner):
    return make_venue(owner=owner)


@pytest.fixture
def booking_day():
    return date.today() + timedelta(days=30)


@pytest.fixture
def make_booking(db):
    def _make(venue, user, day, status="pending", start_time=None, end_time=None, guests=100):
        booking = Booking(
            user_id=user.id,
            venue_id=venue.id,
            venue_name=venue.name,
            booking_date=day,
            start_time=start_time,
            end_time=end_time,
            guests=guests,
            status=status,
            total_price=Decimal("20000"),
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking
    return _make


@pytest.fixture
def headers_for():
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(subject=str(user.id))}"}
    return _headers
