from app.schemas.common import PaginatedResponse, ErrorResponse, CountResponse
from app.schemas.user import User, UserCreate, UserUpdate, Token, RefreshRequest
from app.schemas.venue import (
    VenueView, OwnerInfo, Capacity, Pricing,
    RatingCreate, RatingResult,
)
from app.schemas.booking import (
    Booking, BookingCreate, BookingStatusUpdate, BookingInvite,
    BlockedDate, BlockedDateCreate,
)
from app.schemas.message import (
    Message, MessageCreate, ChatContact, Conversation, ConversationContext,
    ConversationStart, ConversationSummary,
)
from app.schemas.review_notification import Notification, MarkAllReadResponse
from app.schemas.assistant import AssistantQuery, AssistantReply, SpeechRequest
