from app.db.session import Base
from app.models.user import UserProfile
from app.models.venue import Venue
from app.models.booking import Booking, BlockedDate
from app.models.message import Message
from app.models.review_notification import UserRating, Notification
