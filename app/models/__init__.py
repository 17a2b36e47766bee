from app.models.user import UserProfile, UserRole
from app.models.venue import Venue
from app.models.booking import Booking, BookingStatus, BlockedDate
from app.models.message import Message
from app.models.review_notification import UserRating, Notification
