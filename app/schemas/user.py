from typing import Literal, Optional
from pydantic import BaseModel, EmailStr, UUID4
from datetime import datetime


# Shared properties
class UserBase(BaseModel):
    email: EmailStr
    first_name: str
    last_name: str = ""
    phone: Optional[str] = None
    profile_image: Optional[str] = None


# Properties to receive via API on creation (POST /auth/register)
class UserCreate(UserBase):
    password: str
    user_role: Literal["customer", "venue-owner"] = "customer"


# Properties to receive via API on update (PATCH /me)
class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    profile_image: Optional[str] = None


# Properties returned via API
class User(UserBase):
    id: UUID4
    user_role: str
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    user: User


class RefreshRequest(BaseModel):
    refresh_token: str
