from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import UserProfile
from app.schemas.booking import BlockedDate as BlockedDateSchema, BlockedDateCreate
from app.services import blocked_dates

router = APIRouter(prefix="/owner", tags=["Owner - Blocked Dates"])


@router.post(
    "/venues/{venue_id}/blocked-dates",
    response_model=BlockedDateSchema,
    status_code=status.HTTP_201_CREATED,
)
def block_venue_date(
    venue_id: UUID,
    data: BlockedDateCreate,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    """
    Block a whole day or a time window.

    Refused (409) when the day is already blocked or has bookings that are not
    cancelled. A full-day block replaces partial blocks on the same day.
    """
    return blocked_dates.block_date(
        db,
        venue_id,
        current_user.id,
        data.date,
        start_time=data.start_time,
        end_time=data.end_time,
        is_full_day=data.is_full_day,
        reason=data.reason,
    )


@router.delete("/blocked-dates/{blocked_date_id}", status_code=status.HTTP_204_NO_CONTENT)
def unblock_venue_date(
    blocked_date_id: UUID,
    db: Session = Depends(get_db),
    current_user: UserProfile = Depends(get_current_user),
):
    blocked_dates.unblock_date(db, blocked_date_id, current_user.id)
