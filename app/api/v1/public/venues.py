from uuid import UUID
from typing import List, Optional
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.booking import BlockedDate as BlockedDateSchema
from app.schemas.common import PaginatedResponse, paginate
from app.schemas.venue import PriceRange, VenueView
from app.services import blocked_dates
from app.services.venues import VenueFilter, fetch_venues, get_venue, load_venue

router = APIRouter(prefix="/venues", tags=["Venues"])


@router.get("/", response_model=PaginatedResponse[VenueView])
def list_venues(
    city_id: Optional[str] = None,
    category_id: Optional[str] = None,
    guests: Optional[int] = Query(None, ge=1),
    price_range: Optional[PriceRange] = None,
    amenities: Optional[List[str]] = Query(None),
    type: Optional[str] = None,
    search: Optional[str] = None,
    featured: Optional[bool] = None,
    popular: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """
    Venues matching every given filter.

    - **guests**: venue capacity must cover this many people
    - **price_range**: budget (< 15,000), mid (15,000 to 29,999), luxury (30,000+)
    - **amenities**: repeatable; each must appear in the venue's amenities
    - **search**: matched against name, description, city, categories and amenities
    """
    venue_filter = VenueFilter(
        city_id=city_id,
        category_id=category_id,
        guests=guests,
        price_range=price_range,
        amenities=amenities or [],
        type=type,
        search=search,
        featured=featured,
        popular=popular,
    )
    result = fetch_venues(db, venue_filter, page=page, limit=limit)
    return paginate(result.venues, result.total_count, page, limit)


@router.get("/{venue_id}", response_model=VenueView)
def venue_detail(venue_id: UUID, db: Session = Depends(get_db)):
    return get_venue(db, venue_id)


@router.get("/{venue_id}/blocked-dates", response_model=List[BlockedDateSchema])
def venue_blocked_dates(
    venue_id: UUID,
    from_date: Optional[date] = Query(None, alias="from"),
    db: Session = Depends(get_db),
):
    """Blocked days and time windows, so the booking form can grey them out."""
    load_venue(db, venue_id)
    return blocked_dates.list_blocked_dates(db, venue_id, from_date=from_date)
