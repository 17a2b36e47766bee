from fastapi import APIRouter

# Auth
from app.api.v1.public.auth import router as auth_router

# Public: discovery
from app.api.v1.public.venues import router as venues_router
from app.api.v1.public.reviews import router as reviews_router

# Public: bookings
from app.api.v1.public.bookings import router as bookings_router

# Public: user profile & notifications
from app.api.v1.public.me import router as me_router

# Public: messaging
from app.api.v1.public.messages import router as messages_router

# Public: assistant
from app.api.v1.public.assistant import router as assistant_router

# Owner
from app.api.v1.owner.bookings import router as owner_bookings_router
from app.api.v1.owner.blocked_dates import router as owner_blocked_dates_router

# Push channels
from app.api.v1.realtime import router as realtime_router

api_router = APIRouter()

# --- Auth ---
api_router.include_router(auth_router)

# --- Public: discovery ---
api_router.include_router(venues_router)
api_router.include_router(reviews_router)

# --- Public: bookings ---
api_router.include_router(bookings_router)

# --- Public: profile & notifications ---
api_router.include_router(me_router)

# --- Public: messaging ---
api_router.include_router(messages_router)

# --- Public: assistant ---
api_router.include_router(assistant_router)

# --- Owner ---
api_router.include_router(owner_bookings_router)
api_router.include_router(owner_blocked_dates_router)

# --- WebSockets ---
api_router.include_router(realtime_router)
