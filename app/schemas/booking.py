from __future__ import annotations

from typing import Literal, Optional
from pydantic import BaseModel, Field, UUID4, field_validator
from decimal import Decimal
import datetime as dt
from datetime import date, datetime
import re

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_time(v: Optional[str]) -> Optional[str]:
    if v in (None, ""):
        return None
    if not isinstance(v, str) or not _HHMM.match(v):
        raise ValueError("time must be HH:MM")
    return v


# Booking: Create (POST /bookings)
class BookingCreate(BaseModel):
    venue_id: UUID4
    booking_date: date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    guests: int = Field(1, ge=1)
    special_requests: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v):
        return _check_time(v)


# Booking: Full response
class Booking(BaseModel):
    id: UUID4
    user_id: UUID4
    venue_id: UUID4
    venue_name: str
    booking_date: date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    guests: int
    status: str
    total_price: Decimal
    special_requests: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookingStatusUpdate(BaseModel):
    status: Literal["confirmed", "cancelled"]


class BookingInvite(BaseModel):
    emails: list[str] = Field(..., min_length=1)
    message: Optional[str] = None


# Blocked dates
class BlockedDateCreate(BaseModel):
    date: dt.date
    is_full_day: bool = True
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v):
        return _check_time(v)


class BlockedDate(BaseModel):
    id: UUID4
    venue_id: UUID4
    date: dt.date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_full_day: bool
    reason: Optional[str] = None
    created_by: UUID4

    class Config:
        from_attributes = True
