"""
Venue data access.

Venue rows are read through ``to_venue_view`` only; the raw JSON columns never
leave this module. ``city_id`` and ``type`` are plain columns and filtered in
SQL, every other filter runs against the normalized view because the
underlying columns can hold several shapes.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, ContextManager, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BackendUnavailableError, ConflictError, InvalidInputError, NotFoundError
from app.db.session import backend_errors, session_scope
from app.models.review_notification import UserRating
from app.models.venue import Venue
from app.schemas.venue import RatingResult, VenueView
from app.services.realtime import ChangeEvent, EventType, RealtimeBroker, Subscription, broker as default_broker
from app.utils.fields import (
    normalize_array_field,
    normalize_opening_hours,
    normalize_owner_info,
    normalize_rules,
    owner_user_id,
    safe_parse_float,
    safe_parse_int,
)

logger = logging.getLogger(__name__)

TABLE = "venues"

# starting_price bounds, in the venue's currency
PRICE_RANGES = {
    "budget": (None, 15000),
    "mid": (15000, 30000),
    "luxury": (30000, None),
}


@dataclass
class VenueFilter:
    city_id: Optional[str] = None
    category_id: Optional[str] = None
    guests: Optional[int] = None
    price_range: Optional[str] = None
    amenities: List[str] = field(default_factory=list)
    type: Optional[str] = None
    search: Optional[str] = None
    featured: Optional[bool] = None
    popular: Optional[bool] = None

    def __post_init__(self):
        if self.price_range is not None and self.price_range not in PRICE_RANGES:
            raise InvalidInputError(f"Unknown price range: {self.price_range}")


@dataclass
class VenueListResult:
    venues: List[VenueView]
    total_count: int


# ---------------------------------------------------------------------------
# Row -> view model
# ---------------------------------------------------------------------------


def _optional_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    return safe_parse_float(value)


def to_venue_view(venue: Venue) -> VenueView:
    gallery = normalize_array_field(venue.gallery_images)
    pricing = {
        "currency": venue.currency or settings.DEFAULT_CURRENCY,
        "starting_price": safe_parse_float(venue.starting_price),
        "price_per_person": _optional_float(venue.price_per_person),
        "hourly_rate": _optional_float(venue.hourly_rate),
    }
    return VenueView(
        id=venue.id,
        name=venue.name or "",
        description=venue.description or "",
        address=venue.address or "",
        zipcode=venue.zipcode or "",
        city=venue.city_name or "",
        city_id=venue.city_id or "",
        category=normalize_array_field(venue.category_name),
        category_id=normalize_array_field(venue.category_id),
        type=venue.type or "",
        capacity={
            "min": safe_parse_int(venue.min_capacity),
            "max": safe_parse_int(venue.max_capacity),
        },
        pricing=pricing,
        image_url=gallery[0] if gallery else (venue.image_url or ""),
        gallery_images=gallery,
        amenities=normalize_array_field(venue.amenities),
        parking=bool(venue.parking),
        wifi=bool(venue.wifi),
        accessibility_features=normalize_array_field(venue.accessibility_features),
        accepted_payment_methods=normalize_array_field(venue.accepted_payment_methods),
        additional_services=normalize_array_field(venue.additional_services),
        availability=normalize_array_field(venue.availability),
        owner_info=normalize_owner_info(venue.owner_info),
        rules_and_regulations=normalize_rules(venue.rules_and_regulations),
        opening_hours=normalize_opening_hours(venue.opening_hours),
        latitude=venue.latitude,
        longitude=venue.longitude,
        featured=bool(venue.featured),
        popular=bool(venue.popular),
        rating=safe_parse_float(venue.rating),
        reviews=safe_parse_int(venue.reviews_count),
    )


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def _in_price_range(view: VenueView, price_range: str) -> bool:
    low, high = PRICE_RANGES[price_range]
    price = view.pricing.starting_price
    if low is not None and price < low:
        return False
    if high is not None and price >= high:
        return False
    return True


def _has_amenities(view: VenueView, wanted: List[str]) -> bool:
    have = [a.lower() for a in view.amenities]
    return all(any(w.lower() in a for a in have) for w in wanted if w.strip())


def _matches_search(view: VenueView, term: str) -> bool:
    term = term.lower()
    haystack = [view.name, view.description, view.city, *view.category, *view.amenities]
    return any(term in value.lower() for value in haystack if value)


def matches_filter(view: VenueView, venue_filter: VenueFilter) -> bool:
    f = venue_filter
    if f.category_id:
        wanted = f.category_id.lower()
        if wanted not in (c.lower() for c in view.category_id + view.category):
            return False
    if f.guests is not None:
        if not (view.capacity.min <= f.guests <= view.capacity.max):
            return False
    if f.price_range and not _in_price_range(view, f.price_range):
        return False
    if f.amenities and not _has_amenities(view, f.amenities):
        return False
    if f.featured is not None and view.featured != f.featured:
        return False
    if f.popular is not None and view.popular != f.popular:
        return False
    if f.search and f.search.strip() and not _matches_search(view, f.search.strip()):
        return False
    return True


def fetch_venues(db: Session, venue_filter: Optional[VenueFilter] = None, page: int = 1,
                 limit: Optional[int] = None) -> VenueListResult:
    """All venues matching the filter, or an error; never a partial list."""
    venue_filter = venue_filter or VenueFilter()
    query = db.query(Venue)
    if venue_filter.city_id:
        query = query.filter(Venue.city_id == venue_filter.city_id)
    if venue_filter.type:
        query = query.filter(Venue.type == venue_filter.type)

    try:
        rows = query.order_by(Venue.created_at.desc(), Venue.name).all()
    except SQLAlchemyError:
        logger.exception("Failed to fetch venues (filter=%s)", venue_filter)
        raise BackendUnavailableError("Could not load venues, please try again")

    views = [v for v in map(to_venue_view, rows) if matches_filter(v, venue_filter)]
    total = len(views)
    if limit:
        start = (max(page, 1) - 1) * limit
        views = views[start:start + limit]
    return VenueListResult(venues=views, total_count=total)


def load_venue(db: Session, venue_id) -> Venue:
    try:
        venue = db.query(Venue).filter(Venue.id == venue_id).first()
    except SQLAlchemyError:
        logger.exception("Failed to load venue %s", venue_id)
        raise BackendUnavailableError("Could not load venue, please try again")
    if not venue:
        raise NotFoundError("Venue not found")
    return venue


def get_venue(db: Session, venue_id) -> VenueView:
    return to_venue_view(load_venue(db, venue_id))


def venue_owner_id(venue: Venue) -> Optional[uuid.UUID]:
    """The owner's user id, or None when owner_info has none or it is not a UUID."""
    owner = owner_user_id(venue.owner_info)
    if owner is None:
        return None
    try:
        return uuid.UUID(owner)
    except ValueError:
        logger.warning("Venue %s has a malformed owner user id: %r", venue.id, owner)
        return None


def is_venue_owner(venue: Venue, user_id) -> bool:
    owner = owner_user_id(venue.owner_info)
    return owner is not None and owner == str(user_id)


def owned_venue_ids(db: Session, user_id) -> List:
    """Ids of venues whose owner_info names ``user_id``."""
    with backend_errors(db, "load owned venues"):
        rows = db.query(Venue.id, Venue.owner_info).all()
    return [venue_id for venue_id, info in rows if owner_user_id(info) == str(user_id)]


# ---------------------------------------------------------------------------
# Live list
# ---------------------------------------------------------------------------


class LiveVenueFeed:
    """
    Venue list that refetches on every change to the ``venues`` table.

    No diffing: each event re-runs ``fetch_venues`` with the same filter on a
    fresh session and hands the whole result to ``on_result``.
    """

    def __init__(
        self,
        on_result: Callable[[VenueListResult], None],
        venue_filter: Optional[VenueFilter] = None,
        page: int = 1,
        limit: Optional[int] = None,
        broker: RealtimeBroker = default_broker,
        session_factory: Callable[[], ContextManager[Session]] = session_scope,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.on_result = on_result
        self.on_error = on_error
        self.venue_filter = venue_filter or VenueFilter()
        self.page = page
        self.limit = limit
        self._session_factory = session_factory
        self._subscription: Subscription = broker.subscribe(TABLE, self._on_change)

    def refresh(self) -> Optional[VenueListResult]:
        try:
            with self._session_factory() as db:
                result = fetch_venues(db, self.venue_filter, self.page, self.limit)
        except BackendUnavailableError as exc:
            if self.on_error:
                self.on_error(exc)
            return None
        self.on_result(result)
        return result

    def _on_change(self, event: ChangeEvent) -> None:
        logger.debug("Venue %s %s, refetching", event.row.get("id"), event.type.value)
        self.refresh()

    @property
    def active(self) -> bool:
        return self._subscription.active

    def close(self) -> None:
        self._subscription.unsubscribe()


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------


def submit_rating(db: Session, venue_id, user_id, rating,
                  broker: RealtimeBroker = default_broker) -> RatingResult:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidInputError("Rating must be a whole number between 1 and 5")

    venue = load_venue(db, venue_id)
    existing = (
        db.query(UserRating)
        .filter(UserRating.venue_id == venue.id, UserRating.user_id == user_id)
        .first()
    )
    if existing:
        raise ConflictError("You have already rated this venue")

    old_rating = Decimal(str(safe_parse_float(venue.rating)))
    old_count = safe_parse_int(venue.reviews_count)
    new_count = old_count + 1
    # half up, so 4.25 shows as 4.3
    average = ((old_rating * old_count + rating) / new_count).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    new_rating = float(average)

    db.add(UserRating(user_id=user_id, venue_id=venue.id, rating=rating))
    venue.rating = average
    venue.reviews_count = new_count
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("You have already rated this venue")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to save rating for venue %s", venue_id)
        raise BackendUnavailableError("Could not save rating, please try again")
    db.refresh(venue)

    logger.info("Venue %s rated %d by %s -> %.1f (%d reviews)", venue.id, rating, user_id, new_rating, new_count)
    broker.publish_row(TABLE, EventType.UPDATE, venue)
    return RatingResult(rating=new_rating, reviews_count=new_count)
