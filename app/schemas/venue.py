from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, UUID4


class Capacity(BaseModel):
    min: int = 0
    max: int = 0


class Pricing(BaseModel):
    currency: str
    starting_price: float = 0
    price_per_person: Optional[float] = None
    hourly_rate: Optional[float] = None


class SocialLinks(BaseModel):
    facebook: str = ""
    twitter: str = ""
    instagram: str = ""
    linkedin: str = ""


class OwnerInfo(BaseModel):
    name: str = ""
    contact: str = ""
    response_time: str = ""
    user_id: str = ""
    social_links: SocialLinks = SocialLinks()


class OpeningWindow(BaseModel):
    open: str = ""
    close: str = ""


class VenueRule(BaseModel):
    category: str = ""
    title: str = ""
    description: str = ""


# Canonical read model, built only by app.services.venues.to_venue_view
class VenueView(BaseModel):
    id: UUID4
    name: str
    description: str = ""
    address: str = ""
    zipcode: str = ""
    city: str = ""
    city_id: str = ""
    category: List[str] = []
    category_id: List[str] = []
    type: str = ""
    capacity: Capacity
    pricing: Pricing
    image_url: str = ""
    gallery_images: List[str] = []
    amenities: List[str] = []
    parking: bool = False
    wifi: bool = False
    accessibility_features: List[str] = []
    accepted_payment_methods: List[str] = []
    additional_services: List[str] = []
    availability: List[str] = []
    owner_info: Optional[OwnerInfo] = None
    rules_and_regulations: Optional[List[VenueRule]] = None
    opening_hours: Optional[Dict[str, OpeningWindow]] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    featured: bool = False
    popular: bool = False
    rating: float = 0
    reviews: int = 0


PriceRange = Literal["budget", "mid", "luxury"]


class RatingCreate(BaseModel):
    rating: int = Field(..., description="Whole stars, 1-5")


class RatingResult(BaseModel):
    rating: float
    reviews_count: int
