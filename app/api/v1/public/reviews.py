from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import UserProfile
from app.schemas.venue import RatingCreate, RatingResult
from app.services.venues import submit_rating

router = APIRouter(prefix="/venues", tags=["Reviews"])


@router.post("/{venue_id}/ratings", response_model=RatingResult, status_code=201)
def rate_venue(
    venue_id: UUID,
    data: RatingCreate,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """
    Submit a 1-5 star rating for a venue.

    Rules:
    - Rating must be a whole number from 1 to 5.
    - One rating per user per venue (409 if already rated).
    - The venue's `rating` becomes the weighted average, rounded to one decimal,
      and `reviews_count` goes up by one.
    """
    return submit_rating(db, venue_id, current_user.id, data.rating)
